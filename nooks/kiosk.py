"""Host kiosk: keeps a fresh attendance QR on a terminal next to the venue door.

    nooks-kiosk --base-url http://localhost:8000 --meetup <uuid> --bearer <jwt>
"""
from __future__ import annotations
import argparse
import asyncio
import logging
import uuid
from datetime import datetime

import httpx
import qrcode
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .core.errors import NookError
from .core.logging import setup_logging
from .core.qr import qr_text
from .core.windows import ScanPhase
from .services.anchor import AnchorRefresher

logger = logging.getLogger(__name__)


def _rejection(resp: httpx.Response) -> NookError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    err = NookError(body.get("message") or f"issuer answered {resp.status_code}")
    err.code = body.get("error", "http_error")
    err.status_code = resp.status_code
    return err


def print_qr(token: dict) -> None:
    qr = qrcode.QRCode(border=1)
    qr.add_data(qr_text(token))
    qr.make(fit=True)
    print("\033[2J\033[H", end="")
    qr.print_ascii(invert=True)
    print(f"{token['phase']} scan · refreshes every minute")


async def run(base_url: str, meetup_id: uuid.UUID, bearer: str, refresh_seconds: int = 60) -> None:
    headers = {"Authorization": f"Bearer {bearer}"}
    async with httpx.AsyncClient(base_url=base_url, headers=headers, timeout=5.0) as client:
        r = await client.get(f"/meetups/{meetup_id}/phase")
        r.raise_for_status()
        info = r.json()

        async def issue(phase: ScanPhase) -> dict:
            resp = await client.post("/attendance/tokens", json={"meetup_id": str(meetup_id), "phase": phase.value})
            if resp.status_code != 201:
                raise _rejection(resp)
            return resp.json()["token"]

        scheduler = AsyncIOScheduler()
        scheduler.start()
        refresher = AnchorRefresher(
            start=datetime.fromisoformat(info["starts_at"].replace("Z", "+00:00")),
            duration_minutes=info["duration_minutes"],
            issue=issue,
            on_token=print_qr,
            on_error=lambda e: print(e.message),
            scheduler=scheduler,
            interval_seconds=refresh_seconds,
        )
        try:
            await refresher.start()
            while refresher.running:
                await asyncio.sleep(1)
        finally:
            refresher.stop()
            scheduler.shutdown(wait=False)
    logger.info("kiosk stopped: exit window over")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="nooks-kiosk", description=__doc__.splitlines()[0])
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--meetup", required=True, type=uuid.UUID)
    parser.add_argument("--bearer", required=True, help="host access token")
    parser.add_argument("--refresh", type=int, default=60, help="seconds between token refreshes")
    args = parser.parse_args(argv)
    setup_logging("INFO")
    asyncio.run(run(args.base_url, args.meetup, args.bearer, args.refresh))


if __name__ == "__main__":
    main()
