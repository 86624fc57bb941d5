from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .config import AppConfig
from .http_utils import HttpClient
from .models import CanonicalEvent, utc_now_ts
from .normalize import normalize_batches, safe_horizon
from .notify.base import Publisher
from .notify.console import LogPublisher
from .notify.formatter import format_event_message
from .notify.neynar import NeynarPublisher
from .scheduler import CancellationToken
from .sources.base import EventSource
from .sources.graphql import StokefireGraphQLSource
from .state.redis_store import RedisStateStore
from .state.sqlite_store import SqliteStateStore
from .state.store import StateStore, load_watermark
from .tracker import DeliveryTracker


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class LoopState(str, Enum):
    IDLE = "Idle"
    FETCHING = "Fetching"
    NORMALIZING = "Normalizing"
    DELIVERING = "Delivering"
    SHUTTING_DOWN = "ShuttingDown"


@dataclass(slots=True)
class CycleReport:
    started_at: datetime
    finished_at: datetime | None = None
    duration_ms: int = 0
    watermark_before: int | None = None
    watermark_after: int | None = None
    pages_fetched: int = 0
    events_fetched: int = 0
    events_filtered: int = 0
    events_delivered: int = 0
    events_skipped_seen: int = 0
    delivery_failures: int = 0
    retractions: int = 0
    retraction_failures: int = 0
    fetch_error: str | None = None
    cancelled: bool = False


@dataclass(slots=True)
class _PageOutcome:
    aborted: bool


@dataclass(slots=True)
class Runner:
    """
    核心执行器：一次轮询周期内的完整数据流闭环：
    Watermark -> Source -> Normalizer -> (逐条) Formatter -> Publisher -> Watermark / Tracker

    关键不变量：watermark 按事件推进而不是按批推进。第 N 条投递失败时中止本批剩余事件，
    watermark 停在第 N-1 条（与第 N 条同一秒的则停在更早的时间戳），下个周期从这里重新拉取。
    """

    store: StateStore
    source: EventSource
    publisher: Publisher
    tracker: DeliveryTracker
    token: CancellationToken = field(default_factory=CancellationToken)
    page_size: int = 100
    max_pages_per_cycle: int = 10
    initial_grace_seconds: int = 300
    include_relative_time: bool = False
    loop_state: LoopState = LoopState.IDLE

    def run_once(self, now: int | None = None) -> CycleReport:
        """
        执行一个轮询周期（单次）。

        执行顺序：
        - 读取 watermark（不存在则按 grace 窗口初始化）；持久化异常直接向上抛
        - 拉取 occurred_at > watermark 的一页事件；拉取失败记日志后结束本周期
        - 归一、排序、过滤到安全上限以内，逐条投递并逐条推进 watermark
        - 本页完整投递且上游还有更多时，从新的 watermark 继续拉取下一页
        """
        report = CycleReport(started_at=_utc_now())
        start_t = time.monotonic()
        now = utc_now_ts() if now is None else now

        try:
            watermark = load_watermark(self.store, now=now, grace_seconds=self.initial_grace_seconds)
            report.watermark_before = watermark
            report.watermark_after = watermark

            for _ in range(max(1, self.max_pages_per_cycle)):
                if self.token.cancelled:
                    report.cancelled = True
                    break

                self.loop_state = LoopState.FETCHING
                try:
                    result = self.source.fetch_events_since(watermark, self.page_size)
                except Exception as e:  # noqa: BLE001
                    report.fetch_error = f"{type(e).__name__}: {e}"
                    logger.exception(
                        "fetch failed: source_key=%s watermark=%d limit=%d",
                        self.source.key(),
                        watermark,
                        self.page_size,
                    )
                    break
                report.pages_fetched += 1

                self.loop_state = LoopState.NORMALIZING
                events = normalize_batches(result.batches)
                horizon = safe_horizon(result.batches, self.page_size)
                report.events_fetched += len(events)
                candidates = [
                    e for e in events if e.occurred_at > watermark and (horizon is None or e.occurred_at <= horizon)
                ]
                report.events_filtered += len(events) - len(candidates)
                if not candidates:
                    break

                self.loop_state = LoopState.DELIVERING
                outcome = self._deliver(
                    candidates, now=now, horizon=horizon, fetched_from=watermark, report=report
                )
                progressed = report.watermark_after != watermark
                watermark = report.watermark_after
                if outcome.aborted or not progressed or not result.has_more:
                    break
        finally:
            self.loop_state = LoopState.SHUTTING_DOWN if self.token.cancelled else LoopState.IDLE
            report.finished_at = _utc_now()
            report.duration_ms = int((time.monotonic() - start_t) * 1000)

        return report

    def _deliver(
        self,
        events: list[CanonicalEvent],
        *,
        now: int,
        horizon: int | None,
        fetched_from: int,
        report: CycleReport,
    ) -> _PageOutcome:
        """
        按顺序投递一页候选事件。

        watermark 只在某个时间戳 T 上的所有候选都已投递（或已 seen）后才写入 T，
        即下一条候选的时间严格大于 T，或本页干净结束时。
        中途失败/取消时 watermark 停在最后一个完整处理的更早时间戳，
        同一秒内未投递的事件会在下个周期被重新拉取。
        """
        for i, event in enumerate(events):
            if self.token.cancelled:
                report.cancelled = True
                logger.info("shutdown requested: stopping before event_id=%s", event.event_id)
                return _PageOutcome(aborted=True)

            fp = event.fingerprint()
            next_event = events[i + 1] if i + 1 < len(events) else None
            second_done = next_event is None or next_event.occurred_at > event.occurred_at

            if self.store.has_seen(fp):
                report.events_skipped_seen += 1
                if second_done:
                    self._advance(event.occurred_at, horizon=horizon, fetched_from=fetched_from, report=report)
                continue

            text = format_event_message(event, now=now if self.include_relative_time else None)
            try:
                message_id = self.publisher.publish(text)
            except Exception as e:  # noqa: BLE001
                report.delivery_failures += 1
                self.store.record_delivery_failure(
                    fingerprint=fp,
                    error=f"{type(e).__name__}: {e}",
                    event_json=json.dumps(event.to_json_dict(), ensure_ascii=False, sort_keys=True),
                )
                logger.exception(
                    "publish failed: channel=%s publisher_type=%s event_id=%s kind=%s occurred_at=%d watermark=%s",
                    self.publisher.channel(),
                    type(self.publisher).__name__,
                    event.event_id,
                    event.kind.value,
                    event.occurred_at,
                    report.watermark_after,
                )
                return _PageOutcome(aborted=True)

            # seen 先于 watermark 写入：watermark 写失败时下个周期仍能按指纹去重
            self.store.mark_seen(fp)
            if second_done:
                self._advance(event.occurred_at, horizon=horizon, fetched_from=fetched_from, report=report)
            report.events_delivered += 1
            logger.info(
                "published: id=%s kind=%s occurred_at=%d text=%s",
                message_id,
                event.kind.value,
                event.occurred_at,
                text,
            )

            evicted = self.tracker.record(message_id)
            if evicted is not None:
                self._retract(evicted, report)

        return _PageOutcome(aborted=False)

    def _advance(self, timestamp: int, *, horizon: int | None, fetched_from: int, report: CycleReport) -> None:
        target = timestamp
        # 截断切片在 horizon 这一秒可能还有未拉到的事件，先停在 horizon - 1，
        # 重新拉取时靠 seen 去重；若这样毫无进展则只能接受 horizon
        if horizon is not None and timestamp >= horizon and horizon - 1 > fetched_from:
            target = horizon - 1
        current = report.watermark_after
        if current is not None and target <= current:
            return
        self.store.set_watermark(target)
        report.watermark_after = target

    def _retract(self, message_id: str, report: CycleReport) -> None:
        try:
            ok = self.publisher.retract(message_id)
        except Exception:  # noqa: BLE001
            report.retraction_failures += 1
            logger.exception("retract failed: channel=%s message_id=%s", self.publisher.channel(), message_id)
            return
        if ok:
            report.retractions += 1
        else:
            report.retraction_failures += 1
            logger.warning("retract rejected: channel=%s message_id=%s", self.publisher.channel(), message_id)

    def close(self) -> None:
        self.loop_state = LoopState.SHUTTING_DOWN
        logger.info("closing state store")
        self.store.close()


def build_store(config: AppConfig) -> StateStore:
    backend = config.state_backend
    if backend == "sqlite":
        return SqliteStateStore(config.sqlite_path)
    if backend == "redis":
        url = config.resolve_env(config.redis_url_env)
        if not url:
            raise ValueError(f"state.backend=redis requires env {config.redis_url_env}")
        return RedisStateStore.from_url(url, key_prefix=config.redis_key_prefix)
    raise ValueError(f"Unknown state backend: {backend!r}")


def build_runner(config: AppConfig, *, token: CancellationToken | None = None, dry_run: bool = False) -> Runner:
    """
    根据配置构建可运行的 Runner。

    设计取舍：
    - 统一在这里做"配置 -> 实例"的装配，Runner 内只关注流程编排
    - 对 secret/token 只通过环境变量读取，避免落盘
    - Neynar 凭据缺失或 dry_run 时退化为 LogPublisher
    """
    http = HttpClient()
    store = build_store(config)
    source = StokefireGraphQLSource(http=http, endpoint=config.graphql_url)

    publisher: Publisher = LogPublisher()
    if config.neynar and not dry_run:
        api_key = config.resolve_env(config.neynar.api_key_env)
        signer_uuid = config.resolve_env(config.neynar.signer_uuid_env)
        if api_key and signer_uuid:
            publisher = NeynarPublisher(
                api_key=api_key,
                signer_uuid=signer_uuid,
                http=http,
                api_url=config.neynar.api_url,
                max_chars=config.neynar.max_chars,
            )
        else:
            logger.warning(
                "neynar credentials missing (env %s / %s); falling back to dry-run publisher",
                config.neynar.api_key_env,
                config.neynar.signer_uuid_env,
            )

    return Runner(
        store=store,
        source=source,
        publisher=publisher,
        tracker=DeliveryTracker(store=store, max_entries=config.retention_max),
        token=token or CancellationToken(),
        page_size=config.page_size,
        max_pages_per_cycle=config.max_pages_per_cycle,
        initial_grace_seconds=config.initial_grace_seconds,
        include_relative_time=config.include_relative_time,
    )
