"""
Per-hotkey reward metrics for one subnet.

Reads subnet reserves and the epoch timer once, then one row per hotkey:
uid, pruning score and risk, incentive and the alpha/TAO/USD emitted per
epoch and per day. Rows that cannot be resolved (deregistered hotkey,
missing data, non-finite result) collapse to a zeroed "dereged" row so they
never poison the totals.
"""

import math
import asyncio
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
import numpy as np

from weights_report.errors import ChainDataError
from weights_report.settings import ProtocolParams

logger = logging.getLogger(__name__)

RISK_HIGH = 'High'
RISK_LOW = 'Low'
RISK_DEREGED = 'dereged'
DEFAULT_ASSET = 'bittensor'


@dataclass(frozen=True)
class ReportRow:
    uid: object
    hotkey: str
    pruning_score: int
    pruning_risk: str
    incentive: int
    alpha_per_epoch: float
    alpha_per_day: float
    tao_per_day: float
    usd_per_day: float

    @property
    def is_degenerate(self):
        return self.pruning_risk == RISK_DEREGED

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class ReportTotals:
    total_usd_daily: float = 0.0
    total_tao_daily: float = 0.0
    total_alpha_daily: float = 0.0

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class SubnetSummary:
    netuid: int
    tao_price: float
    alpha_price: float
    blocks_since_last_step: int
    blocks_remaining: int
    seconds_to_next_epoch: int
    next_epoch_at: datetime

    def to_dict(self):
        data = asdict(self)
        data['next_epoch_at'] = self.next_epoch_at.isoformat()
        return data


@dataclass(frozen=True)
class Report:
    summary: SubnetSummary
    rows: list
    totals: ReportTotals

    def to_dict(self):
        return {
            'summary': self.summary.to_dict(),
            'rows': [row.to_dict() for row in self.rows],
            'totals': self.totals.to_dict(),
        }


def degenerate_row(hotkey):
    return ReportRow(
        uid="n/a",
        hotkey=hotkey,
        pruning_score=0,
        pruning_risk=RISK_DEREGED,
        incentive=0,
        alpha_per_epoch=0,
        alpha_per_day=0,
        tao_per_day=0,
        usd_per_day=0,
    )


def count_lower(scores, score):
    """Number of entries in `scores` strictly below `score`"""
    return int(np.count_nonzero(np.asarray(scores, dtype=np.int64) < score))


def classify_pruning_risk(lower_count, threshold=10):
    # Near the bottom of the pruning order means next in line for eviction
    return RISK_HIGH if lower_count < threshold else RISK_LOW


def compute_alpha_price(subnet_tao, subnet_alpha_in):
    """TAO per alpha from the subnet pool reserves (SubnetTAO / SubnetAlphaIn)"""
    if subnet_tao is None or subnet_alpha_in is None:
        raise ChainDataError("Subnet reserves are missing")
    try:
        tao_reserve = float(subnet_tao)
        alpha_reserve = float(subnet_alpha_in)
    except (TypeError, ValueError) as e:
        raise ChainDataError(f"Malformed subnet reserves: {subnet_tao!r} / {subnet_alpha_in!r}") from e
    if alpha_reserve == 0:
        raise ChainDataError("SubnetAlphaIn is zero, alpha price is undefined")
    alpha_price = tao_reserve / alpha_reserve
    if not math.isfinite(alpha_price):
        raise ChainDataError(f"Alpha price is not finite: {alpha_price}")
    return alpha_price


def compute_epoch_timer(blocks_since_last_step, protocol=ProtocolParams(), now=None):
    """Returns (blocks_remaining, seconds_to_next_epoch, next_epoch_at)"""
    if blocks_since_last_step is None:
        raise ChainDataError("BlocksSinceLastStep is missing")
    try:
        blocks = int(blocks_since_last_step)
    except (TypeError, ValueError) as e:
        raise ChainDataError(f"Malformed BlocksSinceLastStep: {blocks_since_last_step!r}") from e
    now = now or datetime.now()
    blocks_remaining = protocol.epoch_length - blocks
    seconds = blocks_remaining * protocol.block_interval_seconds
    return blocks_remaining, seconds, now + timedelta(seconds=seconds)


def sum_totals(rows):
    # Degenerate rows are all zeros, so a plain sum is correct
    return ReportTotals(
        total_usd_daily=sum(row.usd_per_day for row in rows),
        total_tao_daily=sum(row.tao_per_day for row in rows),
        total_alpha_daily=sum(row.alpha_per_day for row in rows),
    )


def _as_int(value):
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _entry(values, uid):
    if uid < 0 or uid >= len(values):
        return None
    return _as_int(values[uid])


async def compute_row(reader, netuid, hotkey, alpha_price, tao_price, protocol=ProtocolParams()):
    """Build the report row for one hotkey.

    Chain read failures (timeouts, lost connection) propagate. Data gaps that
    only concern this hotkey give the degenerate row instead.
    """
    try:
        uid = _as_int(await reader.uid_for_hotkey(netuid, hotkey))
    except ChainDataError as e:
        # a malformed hotkey only affects its own row
        logger.warning(f"Could not resolve uid for hotkey {hotkey} on netuid {netuid}: {e}")
        return degenerate_row(hotkey)
    if uid is None:
        logger.warning(f"Hotkey {hotkey} is not registered on netuid {netuid}")
        return degenerate_row(hotkey)
    if uid < 0 or uid >= protocol.max_uids:
        logger.warning(f"uid {uid} ({hotkey}) is outside the {protocol.max_uids} uid slots of netuid {netuid}")
        return degenerate_row(hotkey)

    # Get pruning scores
    pruning_scores = (await reader.pruning_scores(netuid))[:protocol.max_uids]
    my_score = _entry(pruning_scores, uid)
    if my_score is None:
        logger.warning(f"No pruning score for uid {uid} ({hotkey}) on netuid {netuid}")
        return degenerate_row(hotkey)
    scores = [s for s in (_as_int(v) for v in pruning_scores) if s is not None]
    lower_count = count_lower(scores, my_score)
    pruning_risk = classify_pruning_risk(lower_count, protocol.pruning_risk_threshold)

    # Get incentive and emission
    incentive = _entry(await reader.incentives(netuid), uid)
    emission_raw = _entry(await reader.emissions(netuid), uid)
    if incentive is None or emission_raw is None:
        logger.warning(f"Missing incentive or emission for uid {uid} ({hotkey}) on netuid {netuid}")
        return degenerate_row(hotkey)

    emission = emission_raw / protocol.rao_per_unit
    alpha_per_epoch = emission
    alpha_per_day = emission * protocol.epochs_per_day
    tao_per_day = alpha_price * alpha_per_day
    usd_per_day = tao_price * tao_per_day

    if not math.isfinite(usd_per_day):
        logger.warning(f"Non-finite USD/day for uid {uid} ({hotkey}), treating as deregistered")
        return degenerate_row(hotkey)

    logger.debug(f"uid {uid}: score={my_score} lower={lower_count} risk={pruning_risk} "
                 f"incentive={incentive} alpha/epoch={alpha_per_epoch:.4f}")
    return ReportRow(
        uid=uid,
        hotkey=hotkey,
        pruning_score=my_score,
        pruning_risk=pruning_risk,
        incentive=incentive,
        alpha_per_epoch=alpha_per_epoch,
        alpha_per_day=alpha_per_day,
        tao_per_day=tao_per_day,
        usd_per_day=usd_per_day,
    )


async def fetch_tao_price(price_feed, asset_symbol=DEFAULT_ASSET):
    # requests is blocking, keep it off the event loop
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, price_feed.fetch_spot_price_usd, asset_symbol)


async def compute_report(reader, price_feed, netuid, hotkeys, protocol=ProtocolParams(),
                         asset_symbol=DEFAULT_ASSET, max_concurrency=8, now=None):
    """Compute the full report for `hotkeys` on `netuid`.

    The TAO price is fetched first; any failure there (PriceFetchError,
    NetworkTimeout) aborts before a single chain read. Subnet wide values
    (alpha price, epoch timer) must be valid or ChainDataError is raised.
    Rows come back in the order of `hotkeys`.
    """
    tao_price = await fetch_tao_price(price_feed, asset_symbol)
    logger.info(f"TAO price: ${tao_price:.2f}")

    subnet_tao = await reader.subnet_tao(netuid)
    subnet_alpha_in = await reader.subnet_alpha_in(netuid)
    alpha_price = compute_alpha_price(subnet_tao, subnet_alpha_in)
    logger.info(f"alphaPrice = {alpha_price:.6f}")

    blocks = await reader.blocks_since_last_step(netuid)
    blocks_remaining, seconds, next_epoch_at = compute_epoch_timer(blocks, protocol, now)
    logger.info(f"Blocks since last epoch: {blocks}, next epoch in {blocks_remaining} blocks")

    summary = SubnetSummary(
        netuid=netuid,
        tao_price=tao_price,
        alpha_price=alpha_price,
        blocks_since_last_step=int(blocks),
        blocks_remaining=blocks_remaining,
        seconds_to_next_epoch=seconds,
        next_epoch_at=next_epoch_at,
    )

    semaphore = asyncio.Semaphore(max_concurrency)

    async def row_with_semaphore(hotkey):
        async with semaphore:
            return await compute_row(reader, netuid, hotkey, alpha_price, tao_price, protocol)

    tasks = [asyncio.ensure_future(row_with_semaphore(hotkey)) for hotkey in hotkeys]
    try:
        rows = list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        # let cancelled rows unwind before the reader is closed
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    totals = sum_totals(rows)
    dereged = sum(1 for row in rows if row.is_degenerate)
    logger.info(f"Computed {len(rows)} rows for netuid {netuid} ({dereged} deregistered)")
    return Report(summary=summary, rows=rows, totals=totals)
