#!/usr/bin/env python3
"""
backtest_report.py — Time-geometry analysis + backtest report for a candle CSV

Reads <data-dir>/<SYMBOL>.csv (timestamp in epoch ms or a date column, then
open/high/low/close[/volume]) and prints forward vortex windows plus the
ratio, Gann and confluence backtests, solar impact and the overall score.

Usage:
  python3 scripts/backtest_report.py BTCUSDT --data-dir data/
  python3 scripts/backtest_report.py SOL --profile comprehensive --hits --margin 3
  python3 scripts/backtest_report.py BTC --lever period_min_samples=3 --json
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import argparse
import json
import logging
from datetime import date
from pathlib import Path

from fibtime.data.providers import CsvCandleProvider
from fibtime.engine.engine_config import EngineConfig
from fibtime.engine.time_geometry import TimeGeometryService


def parse_levers(pairs):
    levers = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise SystemExit(f"--lever expects key=value, got '{pair}'")
        key, val = pair.split("=", 1)
        levers[key.strip()] = val.strip()
    return levers


def print_stats(title, stats):
    print(f"\n{'─'*70}\n  {title}\n{'─'*70}")
    if not stats:
        print("  (no buckets met the sample threshold)")
        return
    print(f"  {'key':>8}  {'n':>6}  {'avg%':>8}  {'min%':>8}  {'max%':>8}  {'std':>7}  {'up%':>6}")
    for key, s in stats.items():
        print(f"  {key:>8}  {s.sample_size:>6}  {s.avg_change:>8.2f}  {s.min_change:>8.2f}  "
              f"{s.max_change:>8.2f}  {s.std_dev:>7.2f}  {s.success_rate:>6.1f}")


def main():
    parser = argparse.ArgumentParser(description="Fibonacci time-geometry report")
    parser.add_argument("symbol")
    parser.add_argument("--data-dir", default="data", help="Directory holding <SYMBOL>.csv")
    parser.add_argument("--profile", default=None, help="basic | standard | advanced | comprehensive")
    parser.add_argument("--lever", action="append", help="key=value config override (repeatable)")
    parser.add_argument("--today", default=None, help="ISO date used as 'today' (default: now)")
    parser.add_argument("--hits", action="store_true", help="Also run ratio/period hit tests")
    parser.add_argument("--margin", type=float, default=5.0, help="Hit margin in percent")
    parser.add_argument("--tolerance", type=int, default=3, help="Hit tolerance in days")
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of tables")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = EngineConfig.from_profile(args.profile) if args.profile else EngineConfig.from_env()
    levers = parse_levers(args.lever)
    if levers:
        cfg = cfg.with_levers(**levers)

    service = TimeGeometryService(CsvCandleProvider(Path(args.data_dir)), cfg=cfg)
    today = date.fromisoformat(args.today) if args.today else service.today()

    analysis   = service.analyze(args.symbol, today=today)
    report     = service.comprehensive_analysis(args.symbol)
    ratios, periods, confluence = report.fibonacci, report.gann, report.confluence
    solar = report.solar_impact
    hits = []
    if args.hits:
        hits = (service.test_ratio_hits(args.symbol, args.margin, args.tolerance, today=today)
                + service.test_period_hits(args.symbol, args.margin, args.tolerance, today=today))

    if args.json:
        print(json.dumps({
            "analysis":   analysis.to_dict(),
            "ratios":     ratios.to_dict(),
            "periods":    periods.to_dict(),
            "confluence": confluence.to_dict(),
            "solar":      solar.to_dict(),
            "score":      {"overall": report.overall_score, "recommendation": report.recommendation},
            "hits":       [h.to_dict() for h in hits],
        }, indent=2, default=str))
        return

    print(f"\n{'═'*70}\n  {args.symbol}  —  {today}  ({', '.join(cfg.tags())})\n{'═'*70}")
    if analysis.message:
        print(f"  {analysis.message}")
    print(f"  Pivots: {len(analysis.pivots)} recent, {len(analysis.major_pivots)} major   "
          f"compression={analysis.compression_score:.2f}  confidence={analysis.confidence_score:.2f}")
    for w in sorted(analysis.vortex_windows, key=lambda w: -w.intensity)[:10]:
        print(f"  🌀 {w.date}  {w.intensity:.2f}  {w.window_type:<17} {w.description}")

    print_stats("Fibonacci ratio backtest" + (f" — {ratios.message}" if ratios.message else ""),
                ratios.stats)
    print_stats("Gann period backtest" + (f" — {periods.message}" if periods.message else ""),
                periods.stats)

    print(f"\n{'─'*70}\n  Confluence replay ({confluence.windows_tested} windows)\n{'─'*70}")
    if confluence.message:
        print(f"  {confluence.message}")
    for h, s in confluence.horizons.items():
        print(f"  +{h:>2}d  n={s.sample_size:<5} avg={s.avg_return:>7.2f}%  up={s.success_rate:>5.1f}%")
    if confluence.effectiveness:
        e = confluence.effectiveness
        print(f"  hit-rate={e.hit_rate:.1f}%  win/loss={e.win_loss_ratio:.2f}  "
              f"sharpe={e.sharpe:.2f}  maxDD={e.max_drawdown:.1f}%")

    print(f"\n{'─'*70}\n  Solar impact ({solar.high_ap_days} high-AP days)\n{'─'*70}")
    if solar.message:
        print(f"  {solar.message}")
    if solar.impact:
        print(f"  avg high-AP={solar.avg_return_high_ap:.2f}%  avg normal={solar.avg_return_normal:.2f}%  "
              f"vol ratio={solar.volatility_ratio:.2f}  → {solar.impact}")

    print(f"\n  Overall score {report.overall_score:.1f}/100  →  {report.recommendation}")

    if args.hits:
        n_hit = sum(1 for h in hits if h.is_hit)
        print(f"\n{'─'*70}\n  Hit test (±{args.tolerance}d, {args.margin}%): {n_hit}/{len(hits)} hits\n{'─'*70}")
        for h in hits[:25]:
            mark = "✅" if h.is_hit else "·"
            print(f"  {mark} {h.label:<10} pivot {h.pivot_date} → {h.projected_date}  "
                  f"{h.formatted_move:<12} ({h.days_from_projection:+d}d)")


if __name__ == "__main__":
    main()
