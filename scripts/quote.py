#!/usr/bin/env python
"""
Print a quote for a selection.

Usage:
    python scripts/quote.py --product imob:k2 --frequency annual
    python scripts/quote.py --product imob:prime:9 --product loc:prime --addon leads --compare
    python scripts/quote.py --product loc:k:200 --addon pay --billing loc:prepaid --usage boletos:300
"""
import argparse
import logging
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from quote_engine.config.settings import get_settings
from quote_engine.engine import PricingEngine, Selection
from quote_engine.errors import QuoteError
from quote_engine.reports.comparison import breakdown_frame, kombo_comparison, recommend_kombo


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Price a Kenlo selection")
    parser.add_argument('--product', action='append', default=[],
                        help="line:plan[:units], e.g. imob:k:10 (repeatable)")
    parser.add_argument('--addon', action='append', default=[], help="add-on id (repeatable)")
    parser.add_argument('--addon-units', action='append', default=[],
                        help="addon:units, e.g. leads:250 (repeatable)")
    parser.add_argument('--premium', action='append', default=[],
                        help="premium service id wanted (vip_support, dedicated_cs)")
    parser.add_argument('--billing', action='append', default=[],
                        help="item:mode for overage, mode one of recurring, prepaid, postpaid (repeatable)")
    parser.add_argument('--usage', action='append', default=[],
                        help="meter:volume per month, e.g. boletos:300 (repeatable)")
    parser.add_argument('--frequency', default='annual')
    parser.add_argument('--installments', type=int, default=1)
    parser.add_argument('--compare', action='store_true', help="also print the Kombo comparison")
    return parser.parse_args(argv)


def build_selection(args) -> Selection:
    plans = {}
    unit_counts = {}
    for entry in args.product:
        parts = entry.split(':')
        if len(parts) < 2:
            raise SystemExit(f"--product expects line:plan[:units], got '{entry}'")
        plans[parts[0]] = parts[1]
        if len(parts) > 2:
            unit_counts[parts[0]] = int(parts[2])

    add_on_units = {}
    for entry in args.addon_units:
        addon_id, _, units = entry.partition(':')
        add_on_units[addon_id] = int(units)

    overage_billing = {}
    for entry in args.billing:
        item_id, _, mode = entry.partition(':')
        overage_billing[item_id] = mode

    usage = {}
    for entry in args.usage:
        meter_id, _, volume = entry.partition(':')
        usage[meter_id] = int(volume)

    return Selection(
        products=frozenset(plans),
        plans=plans,
        unit_counts=unit_counts,
        add_ons=frozenset(args.addon),
        frequency=args.frequency,
        installments=args.installments,
        add_on_units=add_on_units,
        premium_services=frozenset(args.premium),
        overage_billing=overage_billing,
        usage=usage,
    )


def main(argv=None):
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")
    args = parse_args(argv)

    engine = PricingEngine(settings=settings)
    try:
        selection = build_selection(args)
        breakdown = engine.calculate(selection)
    except QuoteError as e:
        print(f"❌ {e}")
        sys.exit(1)

    print("=" * 60)
    print(f"QUOTE (pricing version {breakdown.config_version})")
    print("=" * 60)
    print(breakdown_frame(breakdown).to_string(index=False))
    print()
    print(f"Subtotal:        {breakdown.subtotal_before_kombo}")
    print(f"Kombo:           {breakdown.kombo_name or '-'} (-{breakdown.kombo_discount_amount})")
    print(f"Final total:     {breakdown.final_total}")
    print(f"Installments:    {' + '.join(str(a) for a in breakdown.installment_schedule)}")
    print(f"Implementation:  {breakdown.implementation_fee} "
          f"({breakdown.implementation_waived_units} waived)")
    print(f"VIP support:     {'included' if breakdown.vip_support_included else 'no'}")
    print(f"Dedicated CS:    {'included' if breakdown.dedicated_cs_included else 'no'}")
    if breakdown.prepaid_items:
        print(f"Pre-paid:        {breakdown.prepaid_total}")
    if breakdown.postpaid_items:
        print(f"Post-paid/month: {breakdown.postpaid_monthly}")
    print(f"First cycle:     {breakdown.first_cycle_total}")
    print()
    print("Trace:")
    print(breakdown.get_trace_text())

    recommendation = recommend_kombo(selection, engine.config)
    if recommendation:
        print()
        print(f"💡 {recommendation.message}")

    if args.compare:
        print()
        print(kombo_comparison(selection, engine.config).to_string(index=False))


if __name__ == "__main__":
    main()
