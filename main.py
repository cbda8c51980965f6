"""
main.py — command-line entry point.

  python main.py "iphone 15"              text search
  python main.py --image photo.jpg        identify the photo, then search
  python main.py --barcode 8901030865278  identify the barcode, then search
  python main.py --restore                show the last search without re-querying
  python main.py --reset                  forget the last search
  python main.py --view OFFER_ID          open one offer and add it to recently viewed
  python main.py --recent                 show recently viewed offers
  python main.py --stats                  search log summary and active backend
  python main.py --keys                   show API keys (masked)
  python main.py --set-key NAME VALUE     store an API key in the database
  python main.py --delete-key NAME        remove a stored key (falls back to .env)

Only the current process sees the ephemeral tier, so --restore from a fresh
process always falls back to the durable copy.
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import config
import database as db
import key_store
import retailer_search
from aggregator import SearchInput, create_aggregator
from errors import AggregationError
from offers import NormalizedOffer
from providers.manager import reset_providers
from session_cache import SearchSession

logger = logging.getLogger(__name__)


# ── Logging ───────────────────────────────────────────────────────────────────

def _log_handlers(data_dir: Path) -> list[logging.Handler]:
    # stdout is reserved for results so they can be piped
    return [
        logging.StreamHandler(sys.stderr),
        logging.FileHandler(str(data_dir / "offer_radar.log"), encoding="utf-8"),
    ]


def setup_logging() -> None:
    # Log file lives in the same data/ directory as the database so that a single
    # Docker volume mount (./data:/app/data) captures both.
    data_dir = Path(config.DATA_DIR)
    data_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        level=logging.INFO,
        handlers=_log_handlers(data_dir),
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


# ── Output ────────────────────────────────────────────────────────────────────

def _print_session(session: SearchSession) -> None:
    print(f"Results for '{session.query}' ({session.search_type}) — {len(session.offers)} offers")
    if session.failed_retailers:
        print(f"  ⚠️  Failed retailers: {', '.join(session.failed_retailers)}")
    for o in session.offers:
        badges = []
        if o.is_best_deal:
            badges.append("BEST DEAL")
        if o.is_lowest_price:
            badges.append("LOWEST PRICE")
        rating = f"{o.rating:.1f}★" if o.rating is not None else "  – "
        price = f"{o.price:>10,.2f}" if o.has_price else "       n/a"
        print(f"  {o.id:<24} {price}  {rating}  {o.vendor:<16} {o.name[:60]}  {' · '.join(badges)}")


def _print_offer(offer: NormalizedOffer) -> None:
    print(offer.name)
    print(f"  Vendor:   {offer.vendor}")
    if offer.has_price:
        mrp = f" (MRP {offer.original_price:,.2f})" if offer.original_price else ""
        print(f"  Price:    {offer.price:,.2f}{mrp}")
    else:
        print(f"  Price:    n/a ({offer.price_status})")
    if offer.rating is not None:
        print(f"  Rating:   {offer.rating:.1f}★")
    print(f"  Link:     {offer.link}")
    for key, value in offer.specifications.items():
        print(f"  {key}: {value}")


async def _print_stats() -> None:
    stats = await db.get_stats()
    per_type = ", ".join(f"{k} {v}" for k, v in stats["searches_per_type"].items()) or "none"
    failures = ", ".join(f"{k} {v}" for k, v in stats["retailer_failures"].items()) or "none"
    print(f"Searches:          {stats['total_searches']} ({per_type})")
    print(f"Last search:       {stats['last_search']}")
    print(f"Retailer failures: {failures}")
    print(f"Retailer backend:  {await retailer_search.backend_name()}")


# ── Commands ──────────────────────────────────────────────────────────────────

async def _manage_keys(args: argparse.Namespace) -> int:
    if args.keys:
        for name, value in (await key_store.get_all_keys()).items():
            print(f"  {name:<20} {key_store.mask(value)}")
        return 0

    if args.set_key:
        name, value = args.set_key
        await key_store.set(name, value)
        print(f"{name} saved ({key_store.mask(value)}).")
    else:
        await key_store.delete(args.delete_key)
        print(f"{args.delete_key} removed from the database.")

    # Collaborators read keys once when built
    reset_providers()
    retailer_search.reset_backend()
    return 0


def _build_input(args: argparse.Namespace) -> Optional[SearchInput]:
    if args.image:
        return SearchInput.from_image(Path(args.image).read_bytes())
    if args.barcode:
        return SearchInput.from_barcode(args.barcode)
    if args.query:
        return SearchInput.from_text(" ".join(args.query))
    return None


async def run(args: argparse.Namespace) -> int:
    if args.keys or args.set_key or args.delete_key:
        await db.init_db()
        return await _manage_keys(args)

    if args.stats:
        await db.init_db()
        await _print_stats()
        return 0

    aggregator = await create_aggregator()

    if args.reset:
        await aggregator.reset_session()
        print("Search session cleared.")
        return 0

    if args.view:
        offer = await aggregator.find_offer(args.view)
        if offer is None:
            print(f"No offer '{args.view}' in the last search or recently viewed.", file=sys.stderr)
            return 1
        await aggregator.record_view(offer)
        _print_offer(offer)
        return 0

    if args.recent:
        recent = await aggregator.recently_viewed()
        if not recent:
            print("Nothing viewed yet.")
        for o in recent:
            print(f"  {o.id:<24} {o.vendor:<16} {o.name[:60]}")
        return 0

    if args.restore:
        session = await aggregator.restore_session()
        if session is None:
            print("No previous search.")
            return 1
        _print_session(session)
        return 0

    request = _build_input(args)
    if request is None:
        print("Nothing to search for — pass a query, --image or --barcode.", file=sys.stderr)
        return 2

    try:
        session = await aggregator.search(request)
    except AggregationError as exc:
        print(f"[{exc.stage}] {exc.message}", file=sys.stderr)
        return 0 if exc.soft else 1

    _print_session(session)
    return 0


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compare one product's price across retailers.")
    parser.add_argument("query", nargs="*", help="text query")
    parser.add_argument("--image", help="path to a product photo")
    parser.add_argument("--barcode", help="EAN/UPC barcode")
    parser.add_argument("--restore", action="store_true", help="show the last search")
    parser.add_argument("--reset", action="store_true", help="forget the last search")
    parser.add_argument("--view", metavar="OFFER_ID", help="open an offer from the last search")
    parser.add_argument("--recent", action="store_true", help="show recently viewed offers")
    parser.add_argument("--stats", action="store_true", help="show search statistics")
    parser.add_argument("--keys", action="store_true", help="show configured API keys (masked)")
    parser.add_argument("--set-key", nargs=2, metavar=("NAME", "VALUE"), help="store an API key")
    parser.add_argument("--delete-key", metavar="NAME", help="remove a stored API key")
    args = parser.parse_args(argv)

    if args.image and not Path(args.image).is_file():
        parser.error(f"image not found: {args.image}")
    for name in (args.set_key[0] if args.set_key else None, args.delete_key):
        if name and name not in key_store.KNOWN_KEYS:
            parser.error(f"unknown key {name!r}; expected one of {', '.join(key_store.KNOWN_KEYS)}")
    return args


def main() -> None:
    args = parse_args()
    setup_logging()

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
