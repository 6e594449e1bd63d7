# cli.py
import os
import sys
import asyncio
import argparse
import logging
from datetime import timedelta

import pandas as pd

from . import aggregate as agg
from . import views
from .client import SocrataQueryClient
from .config import load_config
from .errors import FetchError, PartialFetchError
from .fetcher import WindowFetcher
from .windows import BOROUGHS, now_local, parse_date


def get_args(argv=None):
    p = argparse.ArgumentParser(description="NYC 311 windowed summaries from NYC Open Data")
    p.add_argument("--page-size", type=int, default=int(os.getenv("PAGE_SIZE", "50000")),
                   help="Rows per page/request")
    p.add_argument("--safe-max", type=int, default=int(os.getenv("SAFE_MAX", "300000")),
                   help="Most rows fetched for any single window")
    p.add_argument("--so-token-env", default="SOCRATA_APP_TOKEN",
                   help="Env var name that stores the Socrata app token (default SOCRATA_APP_TOKEN)")
    p.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"),
                   choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("overview", help="Last 7 completed days vs the 7 before, citywide")

    b = sub.add_parser("borough", help="One borough over a date range vs the prior range")
    b.add_argument("name", type=str.upper, choices=BOROUGHS)
    b.add_argument("--since", help="inclusive start date YYYY-MM-DD (default: 6 days ago)")
    b.add_argument("--until", help="inclusive end date YYYY-MM-DD (default: today)")

    t = sub.add_parser("trends", help="Daily volume and top categories")
    t.add_argument("--days", type=int, default=7, choices=[7, 14, 30])

    z = sub.add_parser("zip", help="Latest requests for one incident zip")
    z.add_argument("code")
    z.add_argument("--limit", type=int, default=500)
    return p.parse_args(argv)


def _table(title, entries):
    print(f"\n{title}")
    if not entries:
        print("  (none)")
        return
    print(agg.to_frame(entries).to_string(index=False, float_format=lambda x: f"{x:.1f}"))


def _hourly(hours):
    return pd.DataFrame({"hour": [agg.hour_label(h) for h in range(24)], "requests": hours})


def _print_overview(out):
    print(f"Window {out['window'].label()} vs {out['prior_window'].label()}")
    print(f"Requests: {out['total']:,} (prior {out['total_prior']:,}, "
          f"{out['total_delta_pct']:+.0f}%)")
    _table("Top complaint types", agg.top_n(out["complaints"], 10))
    _table("Borough mix", out["borough_mix"])
    print()
    print(pd.DataFrame(out["borough_cards"]).to_string(index=False, float_format=lambda x: f"{x:.1f}"))
    if out["busiest_day"]:
        day, n = out["busiest_day"]
        print(f"\nBusiest day: {day} ({n:,} requests)")


def _print_borough(out):
    print(f"{out['borough']}: {out['window'].label()} vs {out['prior_window'].label()}")
    print(f"Requests: {out['total']:,} (prior {out['total_prior']:,}, "
          f"{out['total_delta_pct']:+.0f}%)  closure rate {out['closure_rate']:.1f}%  "
          f"busiest hour {out['busiest_hour']}")
    _table("Top complaints", out["top_complaints"])
    _table("Agencies", out["agencies"])
    _table("Zips", out["zips"])
    _table("Statuses", out["statuses"])
    _table("Fastest risers (vs prior)", out["risers"])
    print("\nHourly rhythm")
    print(_hourly(out["hourly"]).to_string(index=False))
    print(f"\nRandom descriptor: {out['random_descriptor'] or 'n/a'}")


def _print_trends(out):
    print(f"Window {out['window'].label()}: {out['total']:,} requests")
    _table("Daily volume", out["daily"])
    _table("Top complaint types", out["top_complaints"])
    _table("Top boroughs", out["top_boroughs"])


def _print_zip(out):
    print(f"Zip {out['zip']}: latest {out['total']:,} requests "
          f"({len(out['points']):,} with coordinates)")
    _table("Complaint types", out["complaints"])
    print()
    print(pd.DataFrame(out["recent"]).to_string(index=False))


async def _run(args, fetcher):
    if args.command == "overview":
        out = await views.city_overview(fetcher)
        _print_overview(out)
    elif args.command == "borough":
        today = now_local().date()
        until = parse_date(args.until) if args.until else today
        since = parse_date(args.since) if args.since else until - timedelta(days=6)
        if since > until:
            raise SystemExit(f"since ({since.isoformat()}) is after until ({until.isoformat()})")
        out = await views.borough_report(fetcher, args.name, since, until)
        _print_borough(out)
    elif args.command == "trends":
        out = await views.trends(fetcher, days=args.days)
        _print_trends(out)
    elif args.command == "zip":
        out = await views.zip_lookup(fetcher, args.code, limit=min(args.limit, fetcher.config.page_size))
        _print_zip(out)


def main(argv=None):
    args = get_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(message)s")

    config = load_config(token_env=args.so_token_env,
                         page_size=args.page_size,
                         safe_max=args.safe_max)
    client = SocrataQueryClient(config)
    fetcher = WindowFetcher(client, config)
    try:
        asyncio.run(_run(args, fetcher))
    except PartialFetchError as exc:
        logging.error("Fetch failed: %s", exc.cause)
        print(f"Error: {exc} ({exc.result.fetched:,} partial rows discarded from display)")
        return 1
    except FetchError as exc:
        logging.error("Fetch failed: %s", exc)
        print(f"Error: {exc}")
        return 1
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
