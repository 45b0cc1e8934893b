"""
Background check for new optional vouchers.

Each poll asks Tally only for optional vouchers above the company's stored
MasterID watermark, raises one notification when any turn up, and moves the
watermark forward. A failed poll leaves the watermark where it was.
"""
from __future__ import annotations
import asyncio
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol
from loguru import logger

from .client import TallyClient
from .codec import build_optional_vouchers_request, parse_voucher_list_xml
from .codec.values import IST
from .config import TallyOrderConfig
from .errors import TallyError
from .models import Company
from .outcomes import PollResult, PollStatus
from .watermark import WatermarkStore

NOTIFICATION_TITLE = "New Vouchers Available"


class Notifier(Protocol):
    def notify(self, title: str, body: str, data: dict) -> None:
        ...


class LogNotifier:
    """Writes notifications to the log."""

    def notify(self, title: str, body: str, data: dict) -> None:
        logger.info(f"{title}: {body}")


class BackgroundPoller:
    """
    Polls each company for optional vouchers created since the last check.

    At most one poll per company runs at a time; a poll requested while one
    is in flight for the same company returns SKIPPED immediately.

    Usage:
        poller = BackgroundPoller(config, JsonFileWatermarkStore(config.watermark_file))
        result = await poller.poll(config.selected_company())
        await poller.run([company])   # timer loop until stop()
    """

    def __init__(
        self,
        config: TallyOrderConfig,
        store: WatermarkStore,
        notifier: Optional[Notifier] = None,
        client_factory: Optional[Callable[[Company], TallyClient]] = None,
    ):
        self.config = config
        self.store = store
        self.notifier = notifier or LogNotifier()
        self.client_factory = client_factory or (lambda company: TallyClient(config, company))
        self.interval_minutes = config.poll_interval_minutes
        self.optional_since = config.optional_since
        self.enabled = True
        self._clients: dict[str, TallyClient] = {}
        self._in_flight: set[str] = set()
        self._wake = asyncio.Event()
        self._stopped = False

    def _client(self, company: Company) -> TallyClient:
        if company.key not in self._clients:
            self._clients[company.key] = self.client_factory(company)
        return self._clients[company.key]

    async def poll(self, company: Company) -> PollResult:
        """Run one poll for a company; also the manual "check now" trigger."""
        key = company.key
        if key in self._in_flight:
            logger.debug(f"Poll already running for {company.name}, skipping")
            return PollResult(company_key=key, status=PollStatus.SKIPPED, watermark=self.store.load(key))

        self._in_flight.add(key)
        try:
            return await self._poll(company)
        finally:
            self._in_flight.discard(key)

    async def _poll(self, company: Company) -> PollResult:
        key = company.key
        watermark = self.store.load(key)
        now = datetime.now(IST)
        xml = build_optional_vouchers_request(
            company.name,
            from_date=self.optional_since,
            to_date=now.date(),
            after_master_id=watermark.last_master_id,
        )

        logger.info(f"Checking {company.name} for optional vouchers after MasterID {watermark.last_master_id}")
        try:
            body = await self._client(company).fetch_xml(xml)
            rows = parse_voucher_list_xml(body)
        except TallyError as e:
            logger.warning(f"Poll failed for {company.name}, watermark kept at {watermark.last_master_id}: {e}")
            return PollResult(company_key=key, status=PollStatus.FAILED, watermark=watermark, detail=str(e))

        new_count = sum(1 for row in rows if row.master_id > watermark.last_master_id)
        advanced = watermark.advance([row.master_id for row in rows], now)
        if advanced is watermark:
            advanced = watermark.touch(now)
        self.store.save(advanced)

        if new_count > 0:
            self.notifier.notify(
                NOTIFICATION_TITLE,
                f"{new_count} new voucher(s) require authorization",
                {"screen": "authorize-vouchers", "count": new_count, "company": key},
            )

        status = PollStatus.ADVANCED if advanced.last_master_id > watermark.last_master_id else PollStatus.UNCHANGED
        logger.info(
            f"Poll complete for {company.name}: {new_count} new, "
            f"watermark {watermark.last_master_id} -> {advanced.last_master_id}"
        )
        return PollResult(company_key=key, status=status, new_count=new_count, watermark=advanced)

    # --- service controls -------------------------------------------------

    def enable(self):
        self.enabled = True
        self._wake.set()

    def disable(self):
        self.enabled = False

    def set_interval(self, minutes: float):
        if minutes <= 0:
            raise ValueError("Poll interval must be positive")
        self.interval_minutes = minutes
        self._wake.set()

    def stop(self):
        self._stopped = True
        self._wake.set()

    async def run(self, companies: Iterable[Company]) -> None:
        """Poll every company on the configured interval until stop() is called."""
        companies = list(companies)
        self._stopped = False
        logger.info(f"Background check started for {len(companies)} company(ies), every {self.interval_minutes} min")
        while not self._stopped:
            if self.enabled:
                results = await asyncio.gather(*(self.poll(c) for c in companies), return_exceptions=True)
                for company, result in zip(companies, results):
                    if isinstance(result, Exception):
                        logger.opt(exception=result).error(f"Background check crashed for {company.name}: {result}")
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_minutes * 60)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
        logger.info("Background check stopped")

    def close(self):
        for client in self._clients.values():
            client.close()
        self._clients.clear()
