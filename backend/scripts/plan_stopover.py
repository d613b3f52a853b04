from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Sequence

from stopover_router.errors import MODE_NOT_SUPPORTED_MESSAGE, NO_ROUTE_FOUND_MESSAGE
from stopover_router.geocoding import GeocodeProvider, PhotonClient
from stopover_router.models import Coordinate, PlaceLocation, TravelMode
from stopover_router.routing_osrm import DirectionsProvider, OSRMClient
from stopover_router.sessions import build_services
from stopover_router.settings import settings


def parse_coordinate(raw: str) -> Coordinate:
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 2:
        raise argparse.ArgumentTypeError("coordinate must be 'lat,lon'")
    try:
        return Coordinate(latitude=float(parts[0]), longitude=float(parts[1]))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid coordinate {raw!r}: {e}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Plan one start -> stopover -> destination route headlessly."
    )
    parser.add_argument("--start", type=parse_coordinate, required=True, help="lat,lon")
    parser.add_argument("--destination", type=parse_coordinate, required=True, help="lat,lon")
    parser.add_argument("--stopover", required=True, help="free-text stopover query, e.g. 'bakery'")
    parser.add_argument("--mode", choices=[m.value for m in TravelMode], default=TravelMode.DRIVING.value)
    parser.add_argument("--osrm-url", default=settings.osrm_base_url)
    parser.add_argument("--photon-url", default=settings.photon_base_url)
    parser.add_argument("--output", default=None, help="optional JSON file for the result")
    return parser


async def plan_stopover(
    args: argparse.Namespace,
    *,
    geocoder: GeocodeProvider | None = None,
    directions: DirectionsProvider | None = None,
) -> dict[str, Any]:
    own_geocoder = geocoder is None
    own_directions = directions is None
    photon = (
        PhotonClient(base_url=args.photon_url, language=settings.photon_language, timeout_s=settings.provider_timeout_s)
        if own_geocoder
        else None
    )
    osrm = (
        OSRMClient(base_url=args.osrm_url, timeout_s=settings.provider_timeout_s, max_retries=settings.provider_max_retries)
        if own_directions
        else None
    )
    try:
        services = build_services(
            geocoder=geocoder or photon,  # type: ignore[arg-type]
            directions=directions or osrm,  # type: ignore[arg-type]
            config=settings,
        )
        mode = TravelMode(args.mode)
        start = PlaceLocation(name="Start", coordinate=args.start)
        destination = PlaceLocation(name="Destination", coordinate=args.destination)

        summary: dict[str, Any] = {
            "start": args.start.model_dump(),
            "destination": args.destination.model_dump(),
            "stopover_query": args.stopover,
            "travel_mode": mode.value,
        }
        if not mode.is_supported:
            summary.update(status="error", message=MODE_NOT_SUPPORTED_MESSAGE)
            return summary

        best = await services.evaluator.find_best_route(
            start,
            args.stopover,
            destination,
            mode,
            args.start.midpoint(args.destination),
        )
        if best is None:
            summary.update(status="error", message=NO_ROUTE_FOUND_MESSAGE)
        else:
            summary.update(status="ok", result=best.model_dump(mode="json"))
        return summary
    finally:
        if photon is not None:
            await photon.aclose()
        if osrm is not None:
            await osrm.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    summary = asyncio.run(plan_stopover(args))
    text = json.dumps(summary, indent=2)
    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text, encoding="utf-8")
    print(text)
    return 0 if summary.get("status") == "ok" else 1


if __name__ == "__main__":
    raise SystemExit(main())
