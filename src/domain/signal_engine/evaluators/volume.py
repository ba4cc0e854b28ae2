"""
Volume Evaluators.

Provides:
- VolumeEvaluator: volume relative to its average, spikes
- MfiEvaluator: money flow zones, zone exits, momentum, pivot divergence
- ObvEvaluator: OBV short/long average relation, crossovers, swing divergence
- CmfEvaluator: Chaikin money flow pressure, zero crosses, peak divergence
- AdLineEvaluator: accumulation/distribution line versus its average
"""

from __future__ import annotations

import math

from ..divergence import DivergenceDetector, detect_peak_divergence, detect_swing_divergence
from ..models import SignalCategory
from .base import EvaluationContext, SignalEvaluator, all_present, crossed_above, crossed_below


class VolumeEvaluator(SignalEvaluator):
    """
    Candle volume versus the `volume_sma` series.

    State bands by ratio: >2.0 very high, >1.5 high, >1.0 above average,
    >0.5 below average, otherwise low.
    """

    name = "volume"
    signal_type = "volume"
    category = SignalCategory.VOLUME
    required_series = ["volume_sma"]
    warmup_periods = 0

    def _evaluate(self, ctx: EvaluationContext) -> None:
        volume = ctx.candle.volume
        average = ctx.value("volume_sma")
        if average is None or average <= 0 or not math.isfinite(volume):
            return
        ratio = volume / average

        if ratio > 2.0:
            ctx.state("Very High Volume", 60 + min(30, (ratio - 2.0) * 10), f"Volume {ratio:.1f}x average", 7)
        elif ratio > 1.5:
            ctx.state("High Volume", 45 + min(20, (ratio - 1.5) * 20), f"Volume {ratio:.1f}x average", 6)
        elif ratio > 1.0:
            ctx.state("Above Average Volume", 35 + min(15, (ratio - 1.0) * 20), f"Volume {ratio:.1f}x average", 5)
        elif ratio > 0.5:
            ctx.state("Below Average Volume", 25 + min(10, (ratio - 0.5) * 20), f"Volume {ratio:.1f}x average", 4)
        else:
            ctx.state("Low Volume", 20, f"Volume {ratio:.1f}x average", 3)

        multiplier = ctx.section.spike_multiplier
        if volume > average * multiplier:
            strength = 50 + min(50, (ratio - multiplier) * 20)
            ctx.event("Volume Spike", strength, f"Volume {volume:.0f} is {ratio:.1f}x average {average:.0f}", 8)


class MfiEvaluator(SignalEvaluator):
    """
    Money flow index.

    Divergence runs through DivergenceDetector on closing prices once
    `divergence_min_index` bars exist.
    """

    name = "mfi"
    signal_type = "mfi"
    category = SignalCategory.VOLUME
    required_series = ["mfi"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        current, previous = ctx.value("mfi"), ctx.value("mfi", 1)
        if not all_present(current, previous):
            return
        settings = ctx.section
        overbought, oversold = settings.overbought, settings.oversold

        if current > overbought:
            ctx.state("Overbought", 50 + min(30, (current - overbought) / 2), f"MFI at {current:.1f}", 7)
        elif current < oversold:
            ctx.state("Oversold", 50 + min(30, (oversold - current) / 2), f"MFI at {current:.1f}", 7)
        elif current > 60:
            ctx.state("High MFI", 35 + min(20, (current - 60) / 2), f"MFI at {current:.1f}", 5)
        elif current < 40:
            ctx.state("Low MFI", 35 + min(20, (40 - current) / 2), f"MFI at {current:.1f}", 5)
        else:
            ctx.state("Neutral MFI", 25, f"MFI at {current:.1f}", 4)

        change = current - previous
        if change > 1:
            ctx.state("Rising MFI", 40 + min(25, abs(change) * 2), f"MFI rising by {change:.1f} points", 6)
        elif change < -1:
            ctx.state("Falling MFI", 40 + min(25, abs(change) * 2), f"MFI falling by {abs(change):.1f} points", 6)

        two_back = ctx.value("mfi", 2)
        if two_back is not None:
            momentum = (current - two_back) / 2
            if momentum > 3:
                ctx.state("Strong Bullish Momentum", 60, "MFI showing strong upward momentum", 7)
            elif momentum < -3:
                ctx.state("Strong Bearish Momentum", 60, "MFI showing strong downward momentum", 7)

        if current < overbought and previous >= overbought:
            ctx.event("Overbought Exit", 85, "MFI exited overbought territory", 9)
        if current > oversold and previous <= oversold:
            ctx.event("Oversold Exit", 85, "MFI exited oversold territory", 9)

        self._divergence(ctx)

    def _divergence(self, ctx: EvaluationContext) -> None:
        if ctx.candles is None or ctx.index < ctx.section.divergence_min_index:
            return
        values = ctx.recent_values("mfi", ctx.settings.divergence.lookback)
        divergence = DivergenceDetector(ctx.settings.divergence).detect_series(ctx.candles, values, ctx.index)
        if divergence is None:
            return
        ctx.event(
            f"MFI {divergence.kind.label} Divergence",
            min(100, divergence.strength + 5),
            divergence.description,
            10,
        )


class ObvEvaluator(SignalEvaluator):
    """
    On-balance volume through its short and long moving averages.

    Series:
        obv: raw OBV (divergence)
        obv_sma_short, obv_sma_long: averages for states and crossovers
    """

    name = "obv"
    signal_type = "obv"
    category = SignalCategory.VOLUME
    required_series = ["obv", "obv_sma_short", "obv_sma_long"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        short, long_ = ctx.value("obv_sma_short"), ctx.value("obv_sma_long")
        if not all_present(ctx.value("obv"), short, long_):
            return

        distance = abs(short - long_) / abs(long_ or 1) * 100
        if short > long_:
            ctx.state("OBV Above SMA", 40 + min(30, distance * 10), "OBV short average above long average", 6)
        else:
            ctx.state("OBV Below SMA", 40 + min(30, distance * 10), "OBV short average below long average", 6)

        prev_short, prev_long = ctx.value("obv_sma_short", 1), ctx.value("obv_sma_long", 1)
        if all_present(prev_short, prev_long):
            short_trend, long_trend = short - prev_short, long_ - prev_long
            if short_trend > 0 and long_trend > 0:
                ctx.state("OBV Rising", 45, "OBV averages both rising", 5)
            elif short_trend < 0 and long_trend < 0:
                ctx.state("OBV Falling", 45, "OBV averages both falling", 5)

            if crossed_above(short, long_, prev_short, prev_long):
                ctx.event("OBV Bullish Crossover", 75, "OBV short average crossed above long average", 8)
            elif crossed_below(short, long_, prev_short, prev_long):
                ctx.event("OBV Bearish Crossover", 75, "OBV short average crossed below long average", 8)

        settings = ctx.section
        if ctx.candles is None or ctx.index < settings.divergence_lookback:
            return
        values = ctx.recent_values("obv", settings.divergence_lookback)
        found = detect_swing_divergence(
            ctx.candles, values, ctx.index, settings.divergence_lookback, settings.min_peak_distance
        )
        if found is not None:
            direction = "Bullish" if found.bullish else "Bearish"
            ctx.event(f"OBV {direction} Divergence", 90, found.details, 10)


class CmfEvaluator(SignalEvaluator):
    """Chaikin money flow."""

    name = "cmf"
    signal_type = "cmf"
    category = SignalCategory.VOLUME
    required_series = ["cmf"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        current, previous = ctx.value("cmf"), ctx.value("cmf", 1)
        if not all_present(current, previous):
            return
        settings = ctx.section
        strong = settings.strong_level

        if current > strong:
            ctx.state("Strong Positive CMF", 50 + min(30, (current - strong) * 200), f"CMF at {current:.3f}", 7)
        elif current > 0:
            ctx.state("Positive CMF", 35 + min(20, current * 200), f"CMF at {current:.3f}", 5)
        elif current < -strong:
            ctx.state("Strong Negative CMF", 50 + min(30, (abs(current) - strong) * 200), f"CMF at {current:.3f}", 7)
        elif current < 0:
            ctx.state("Negative CMF", 35 + min(20, abs(current) * 200), f"CMF at {current:.3f}", 5)
        else:
            ctx.state("Neutral CMF", 25, f"CMF at {current:.3f}", 3)

        change = current - previous
        if abs(change) > settings.change_threshold:
            label = "Rising CMF" if change > 0 else "Falling CMF"
            ctx.state(label, 40 + min(25, abs(change) * 400), f"CMF changed by {change:+.3f}", 6)

        if previous <= 0 < current:
            ctx.event("Bullish Zero Cross", 70, f"CMF crossed above zero: {current:.3f}", 7)
        if previous >= 0 > current:
            ctx.event("Bearish Zero Cross", 70, f"CMF crossed below zero: {current:.3f}", 7)

        if ctx.candles is None:
            return
        values = ctx.recent_values("cmf", settings.divergence_lookback)
        for found in detect_peak_divergence(
            ctx.candles, values, ctx.index, "CMF", settings.divergence_lookback, settings.peak_threshold
        ):
            direction = "Bullish" if found.bullish else "Bearish"
            ctx.event(f"{direction} CMF Divergence", 90, found.details, 9)


class AdLineEvaluator(SignalEvaluator):
    """Accumulation/distribution line versus its moving average (`adl_sma`)."""

    name = "adline"
    signal_type = "adline"
    category = SignalCategory.VOLUME
    required_series = ["adline", "adl_sma"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        adl, sma = ctx.value("adline"), ctx.value("adl_sma")
        prev_adl, prev_sma = ctx.value("adline", 1), ctx.value("adl_sma", 1)
        if not all_present(adl, sma, prev_adl, prev_sma):
            return

        scale = abs(sma) or 1
        distance = abs(adl - sma) / scale
        if adl > sma:
            ctx.state("ADL Above SMA", 40 + min(30, distance * 1000), "Accumulation", 6)
        else:
            ctx.state("ADL Below SMA", 40 + min(30, distance * 1000), "Distribution", 6)

        change = adl - prev_adl
        if abs(change) > abs(sma) * 0.001:
            strength = 35 + min(25, abs(change) / scale * 10000)
            if change > 0:
                ctx.state("ADL Rising", strength, "Accumulation accelerating", 5)
            else:
                ctx.state("ADL Falling", strength, "Distribution accelerating", 5)

        if crossed_above(adl, sma, prev_adl, prev_sma):
            ctx.event("Bullish Crossover", 65, "ADL crossed above its average", 6)
        elif crossed_below(adl, sma, prev_adl, prev_sma):
            ctx.event("Bearish Crossover", 65, "ADL crossed below its average", 6)
