"""
Generate synthetic marketing data with the simulator

This script builds a four-year weekly scenario with two channels (TV and
paid search), exports the observed data, and compares the ground-truth ROAS
of each channel with what a naive regression on the observed data would
report.

Requires the `examples` extra (scikit-learn, matplotlib).
"""

from datetime import datetime, timedelta

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression

from amss import (
    NaturalMigrationConfig,
    SalesConfig,
    SearchMediaConfig,
    SimulationConfig,
    TraditionalMediaConfig,
    budget_periods,
    calculate_mroas,
    calculate_roas,
    configure_logging,
    pulsed_flighting,
    seasonal_series,
    simulate,
)


POPULATION = 1_000_000

# Weekly natural churn between mindset states
NATURAL_MIGRATION = {
    'market': [[0.95, 0.05],
               [0.05, 0.95]],
    'satiation': [[0.6, 0.4],
                  [0.2, 0.8]],
    'activity': [[0.85, 0.12, 0.03],
                 [0.5, 0.35, 0.15],
                 [0.7, 0.2, 0.1]],
    'favorability': [[0.98, 0.0, 0.02, 0.0, 0.0],
                     [0.0, 0.96, 0.04, 0.0, 0.0],
                     [0.0, 0.02, 0.95, 0.03, 0.0],
                     [0.0, 0.0, 0.04, 0.94, 0.02],
                     [0.0, 0.0, 0.0, 0.05, 0.95]],
    'loyalty': [[0.97, 0.015, 0.015],
                [0.05, 0.95, 0.0],
                [0.05, 0.0, 0.95]],
}

# TV builds awareness and favorability
TV_EFFECT = {
    'favorability': [[0.6, 0.0, 0.3, 0.1, 0.0],
                     [0.0, 0.8, 0.2, 0.0, 0.0],
                     [0.0, 0.0, 0.7, 0.3, 0.0],
                     [0.0, 0.0, 0.0, 0.8, 0.2],
                     [0.0, 0.0, 0.0, 0.0, 1.0]],
}

# Search nudges explorers into purchase and favorability up
SEARCH_EFFECT = {
    'activity': [[1.0, 0.0, 0.0],
                 [0.0, 0.6, 0.4],
                 [0.0, 0.0, 1.0]],
    'favorability': [[0.7, 0.0, 0.3, 0.0, 0.0],
                     [0.0, 0.9, 0.1, 0.0, 0.0],
                     [0.0, 0.0, 0.8, 0.2, 0.0],
                     [0.0, 0.0, 0.0, 0.9, 0.1],
                     [0.0, 0.0, 0.0, 0.0, 1.0]],
}


# Weekly per-capita search budget at which the bid reaches the top of the CPC range
SEARCH_FULL_BID_BUDGET = 0.02
SEARCH_CPC_RANGE = (0.4, 1.2)


def search_bid(t, per_capita_budget, period):
    """Bid higher per click as the weekly search budget grows."""
    lo, hi = SEARCH_CPC_RANGE
    return lo + (hi - lo) * min(per_capita_budget / SEARCH_FULL_BID_BUDGET, 1.0)


def build_scenario(n_weeks=208, tv_budget=2_000_000, search_budget=600_000):
    """
    Build a two-channel weekly scenario.

    Parameters
    ----------
    n_weeks : int, default=208
        Number of weeks (default is four years)
    tv_budget : float, default=2_000_000
        Yearly TV budget, spent in pulsed flights
    search_budget : float, default=600_000
        Yearly search budget; a larger weekly budget buys a higher bid

    Returns
    -------
    SimulationConfig
        Validated simulation configuration
    """
    yearly = budget_periods(n_weeks, 52)
    n_years = int(yearly.max()) + 1

    tv = TraditionalMediaConfig(
        name='tv',
        budget=np.full(n_years, tv_budget),
        budget_index=yearly,
        flighting=pulsed_flighting(n_weeks, on_weeks=4, off_weeks=4, weights=[1.0, 1.5, 1.5, 1.0]),
        cpm=8.0,
        half_saturation=2.0,
        slope=1.5,
        audience={'availability': [0.7, 1.0, 1.0]},
        transition_matrices=TV_EFFECT,
    )

    search = SearchMediaConfig(
        name='search',
        budget=np.full(n_years, search_budget),
        budget_index=yearly,
        query_rate={'activity': [0.0, 0.6, 1.0], 'favorability': [0.2, 0.5, 0.8, 1.0, 1.0]},
        base_ctr=0.04,
        ctr_modifiers={'favorability': [0.5, 0.3, 1.0, 1.5, 2.0]},
        cpc_min=SEARCH_CPC_RANGE[0],
        cpc_max=SEARCH_CPC_RANGE[1],
        bid_fn=search_bid,
        transition_matrices=SEARCH_EFFECT,
    )

    return SimulationConfig(
        n_steps=n_weeks,
        natural_migration=NaturalMigrationConfig(
            population_total=POPULATION,
            transition_matrices=NATURAL_MIGRATION,
            market_size=seasonal_series(n_weeks, amplitude=0.05, base=POPULATION),
        ),
        media=[tv, search],
        sales=SalesConfig(price=seasonal_series(n_weeks, amplitude=0.03, phase=13, base=10.0)),
    )


def generate_marketing_data(n_weeks=208, seed=42):
    """
    Simulate the scenario and return the observed weekly data.

    Parameters
    ----------
    n_weeks : int, default=208
        Number of weeks
    seed : int, default=42
        Random seed for reproducibility

    Returns
    -------
    record : SimulationRecord
        Full simulation output
    df : DataFrame
        Observed data with calendar columns
    """
    record = simulate(build_scenario(n_weeks), seed=seed)

    start_date = datetime(2021, 1, 3)
    df = record.observed.copy()
    df.insert(0, 'date', [start_date + timedelta(weeks=int(t)) for t in df['time']])
    df['week_of_year'] = [d.isocalendar()[1] for d in df['date']]
    df['year'] = [d.year for d in df['date']]
    return record, df


def naive_roas(df, channels=('tv', 'search')):
    """
    Regress revenue on same-week spend and read coefficients as ROAS.

    Carryover and saturation are ignored, which is the kind of
    estimate the ground truth is meant to check.
    """
    X = df[[f'{c}_spend' for c in channels]].to_numpy()
    X = np.column_stack([X, np.sin(2 * np.pi * df['time'] / 52), np.cos(2 * np.pi * df['time'] / 52)])
    model = LinearRegression().fit(X, df['revenue'])
    return dict(zip(channels, model.coef_[:len(channels)]))


if __name__ == "__main__":
    configure_logging()

    print("Simulating marketing data...")
    record, df_marketing = generate_marketing_data(n_weeks=208)
    df_marketing.to_csv('sample_data.csv', index=False)
    print(f"Saved sample_data.csv ({len(df_marketing)} rows)")

    print("\nMarketing Data Summary:")
    print(df_marketing[['revenue', 'sales', 'tv_spend', 'search_spend', 'search_clicks']].describe())

    # Ground truth for the third year
    window = dict(t_start=104, t_end=155)
    print("\nGround truth (year 3):")
    truth = {}
    for channel in ('tv', 'search'):
        result = calculate_roas(record, channel, verbose=True, seed=1, max_time=120, **window)
        marginal = calculate_mroas(record, channel, seed=1, max_time=120, **window)
        truth[channel] = result.mean
        print(f"  {channel:>6}: ROAS={result.mean:.3f} (+/- {result.margin_of_error:.3f}, "
              f"{result.n_reps} reps, {result.state.value}), mROAS={marginal:.3f}")

    naive = naive_roas(df_marketing)
    print("\nNaive regression vs truth:")
    print(pd.DataFrame({'truth': truth, 'naive_regression': naive}))

    fig, axes = plt.subplots(2, 1, figsize=(12, 7), sharex=True)
    axes[0].plot(df_marketing["date"], df_marketing["revenue"], label="revenue")
    axes[0].legend()
    axes[1].plot(df_marketing["date"], df_marketing["tv_spend"], label="tv")
    axes[1].plot(df_marketing["date"], df_marketing["search_spend"], label="search")
    axes[1].legend()
    fig.tight_layout()
    fig.savefig("sample_data.png")
    print("\nSaved sample_data.png")
