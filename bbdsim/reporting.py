"""
Console reporting for a completed Monte Carlo run.
"""

import numpy as np
from bbdsim import config as cfg
from bbdsim.utils import format_money


def _percentile_row(label, values):
    cells = " ".join(f"{format_money(values[p]):>12}" for p in cfg.PERCENTILES)
    return f"  {label:<22} {cells}"


def print_percentile_table(output):
    """Terminal percentiles of both strategies on the same return paths."""
    header = " ".join(f"{'P' + str(p):>12}" for p in cfg.PERCENTILES)
    basis = "REAL" if output.inflation_adjusted else "NOMINAL"
    print(f"\n{'='*100}")
    print(f"TERMINAL NET WORTH - {output.time_horizon}-YEAR HORIZON ({basis})")
    print(f"{'='*100}")
    print(f"  {'Strategy':<22} {header}")
    print("-"*100)
    print(_percentile_row("Buy-Borrow-Die", output.terminal_percentiles))
    print(_percentile_row("Sell assets", output.sell_strategy['terminal_percentiles']))
    print("-"*100)
    print(_percentile_row("BBD path terminal",
                          {p: output.net_worth_paths.terminal(p) for p in cfg.PERCENTILES}))
    print("="*100)


def print_risk_table(output):
    stats = output.statistics
    sell = output.sell_strategy
    print(f"\n{'='*80}")
    print("SUCCESS AND RISK")
    print(f"{'='*80}")
    print(f"  {'Metric':<36} {'BBD':>14} {'Sell':>14}")
    print("-"*80)
    print(f"  {'Success rate (ends above start)':<36} {stats['success_rate']*100:>13.1f}% "
          f"{sell['success_rate']*100:>13.1f}%")
    print(f"  {'Failure / depletion rate':<36} {stats['failure_rate']*100:>13.1f}% "
          f"{sell['depletion_rate']*100:>13.1f}%")
    print(f"  {'Margin call rate':<36} {stats['margin_call_rate']*100:>13.1f}% {'':>14}")
    print(f"  {'Median CAGR':<36} {stats['cagr']*100:>13.2f}%")
    print(f"  {'TWRR of median path':<36} {stats['twrr']*100:>13.2f}%")
    print(f"  {'Annualized volatility':<36} {stats['annualized_volatility']*100:>13.2f}%")
    print(f"  {'Median lifetime taxes':<36} {'':>14} {format_money(sell['median_total_tax']):>14}")
    print("="*80)


def print_margin_call_table(output, max_rows: int = 40):
    print(f"\n{'='*60}")
    print("MARGIN CALL RISK BY YEAR")
    print(f"{'='*60}")
    print(f"  {'Year':>6} {'In year':>14} {'Cumulative':>14}")
    print("-"*60)
    for row in output.margin_call_stats[:max_rows]:
        print(f"  {row['year']:>6} {row['probability']:>13.2f}% {row['cumulative_probability']:>13.2f}%")
    if len(output.margin_call_stats) > max_rows:
        print(f"  ... {len(output.margin_call_stats) - max_rows} more years")
    print("="*60)


def print_estate_table(output):
    estate = output.estate_analysis
    comparison = output.bbd_comparison
    integrated = output.integrated_estate
    print(f"\n{'='*80}")
    print("ESTATE AT DEATH (MEDIAN BBD PATH)")
    print(f"{'='*80}")
    print(f"  Portfolio value:             {format_money(estate.terminal_portfolio_value):>14}")
    print(f"  Loan repaid from estate:     {format_money(estate.terminal_loan_balance):>14}")
    print(f"  Net estate:                  {format_money(estate.net_estate):>14}")
    print(f"  Embedded capital gains:      {format_money(estate.embedded_capital_gains):>14}")
    print(f"  Step-up tax savings:         {format_money(estate.stepped_up_basis_savings):>14}")
    print(f"  Net if sold instead:         {format_money(comparison['sell_net_estate']):>14}")
    print(f"  BBD advantage (same path):   {format_money(comparison['bbd_advantage']):>14}")
    print("-"*80)
    print(f"  Median BBD estate:           {format_money(integrated['bbd_net_estate']):>14}")
    print(f"  Median sell-strategy estate: {format_money(integrated['sell_net_estate']):>14}")
    print(f"  BBD advantage (medians):     {format_money(integrated['bbd_advantage']):>14}")
    print("="*80)


def print_summary(output):
    """Print every summary table for one run."""
    print_percentile_table(output)
    print_risk_table(output)
    print_margin_call_table(output)
    print_estate_table(output)

    diagnostics = output.diagnostics
    failures = diagnostics['failure_analysis']
    print(f"\n  Seed: {output.seed}{' (generated)' if output.seed_generated else ''}")
    if diagnostics['generator'] is not None:
        print(f"  Return model: {diagnostics['generator'].get('model')}")
    if failures['count'] > 0:
        print(f"  [WARN] {failures['count']:,} of {output.iterations:,} BBD paths failed "
              f"(earliest in year {failures['earliest_failure_year']})")
    if diagnostics['non_finite_count'] > 0:
        print(f"  [WARN] {diagnostics['non_finite_count']:,} non-finite terminal values excluded")
    median_interest = output.sbloc_trajectory['median_cumulative_interest']
    if len(median_interest) and np.isfinite(median_interest[-1]):
        print(f"  Median lifetime interest: {format_money(median_interest[-1])}")
