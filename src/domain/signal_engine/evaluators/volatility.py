"""
Volatility Evaluators.

Provides:
- BollingerEvaluator: band position and band walks
- BbwEvaluator: band-width squeeze start/release
- AtrEvaluator: ATR expansion/contraction versus its average
- KeltnerEvaluator / DonchianEvaluator: channel breakouts and middle crosses
- TtmSqueezeEvaluator: squeeze release after a minimum duration
"""

from __future__ import annotations

from typing import Optional

from ..models import SignalCategory
from ..payloads import BandValue, SqueezeValue
from .base import EvaluationContext, SignalEvaluator, all_present, crossed_above, crossed_below

MAX_SQUEEZE_LOOKBACK = 100


class BollingerEvaluator(SignalEvaluator):
    """
    Bollinger bands.

    A band walk needs `band_walk_touches` closes at or beyond a band within
    the last `band_walk_lookback` bars (current bar included).
    """

    name = "bollinger"
    signal_type = "bollinger"
    category = SignalCategory.VOLATILITY
    required_series = ["bollinger"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        settings = ctx.section
        lookback = settings.band_walk_lookback
        if ctx.index < lookback:
            return

        band = ctx.payload("bollinger", BandValue)
        if band is None or not band.is_valid():
            return
        close = ctx.candle.close

        if close > band.upper:
            ctx.state("Above Upper Band", 45, f"Close {close:.2f} above upper band {band.upper:.2f}", 5)
        elif close < band.lower:
            ctx.state("Below Lower Band", 45, f"Close {close:.2f} below lower band {band.lower:.2f}", 5)
        elif close >= band.middle:
            ctx.state("Upper Half", 30, "Close between middle and upper band", 4)
        else:
            ctx.state("Lower Half", 30, "Close between lower and middle band", 4)

        touches_upper = touches_lower = 0
        for offset in range(lookback):
            past = ctx.candle_at(offset)
            past_band = ctx.payload("bollinger", BandValue, offset=offset)
            if past is None or past_band is None or not past_band.is_valid():
                continue
            if past.close >= past_band.upper:
                touches_upper += 1
            if past.close <= past_band.lower:
                touches_lower += 1

        if touches_upper >= settings.band_walk_touches:
            strength = 60 + min(40, touches_upper / lookback * 40)
            ctx.event("Upper Band Walk", strength, f"Close at upper band on {touches_upper} of last {lookback} bars", 7)
        if touches_lower >= settings.band_walk_touches:
            strength = 60 + min(40, touches_lower / lookback * 40)
            ctx.event("Lower Band Walk", strength, f"Close at lower band on {touches_lower} of last {lookback} bars", 7)


class BbwEvaluator(SignalEvaluator):
    """Bollinger band width (percent) against a squeeze threshold."""

    name = "bbw"
    signal_type = "bbw"
    category = SignalCategory.VOLATILITY
    required_series = ["bbw"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        current, previous = ctx.value("bbw"), ctx.value("bbw", 1)
        if not all_present(current, previous):
            return
        threshold = ctx.section.threshold

        if current < threshold and previous >= threshold:
            ctx.event("squeeze_start", 75, f"BBW {current:.2f} fell below {threshold:.2f}", 7)
        if current > threshold and previous <= threshold:
            ctx.event("squeeze_release", 80, f"BBW {current:.2f} rose above {threshold:.2f}", 8)

        if current < threshold:
            ctx.state("in_squeeze", 60, f"BBW {current:.2f} below {threshold:.2f}", 6)
        else:
            ctx.state("no_squeeze", 25, f"BBW {current:.2f}", 3)


class AtrEvaluator(SignalEvaluator):
    """
    ATR versus its moving average.

    Uses the `atr_sma` series when supplied, otherwise the mean of the last
    `period` ATR values.
    """

    name = "atr"
    signal_type = "atr"
    category = SignalCategory.VOLATILITY
    required_series = ["atr"]

    def _average(self, ctx: EvaluationContext, offset: int) -> Optional[float]:
        supplied = ctx.value("atr_sma", offset)
        if supplied is not None:
            return supplied
        period = ctx.section.period
        end = ctx.index - offset + 1
        if end - period < 0:
            return None
        window = ctx.series.window("atr", end - period, end)
        if not all_present(*window):
            return None
        return sum(window) / period

    def _evaluate(self, ctx: EvaluationContext) -> None:
        atr, prev_atr = ctx.value("atr"), ctx.value("atr", 1)
        average, prev_average = self._average(ctx, 0), self._average(ctx, 1)
        if not all_present(atr, prev_atr, average, prev_average) or average <= 0:
            return
        settings = ctx.section
        high, low = settings.multiplier, settings.low_multiplier
        ratio = atr / average

        if atr > average * high:
            ctx.state("Elevated Volatility", 45, f"ATR {ratio:.1f}x average", 5)
        elif atr < average * low:
            ctx.state("Compressed Volatility", 40, f"ATR {ratio:.1f}x average", 4)
        else:
            ctx.state("Normal Volatility", 25, f"ATR {ratio:.1f}x average", 3)

        if atr > average * high and prev_atr <= prev_average * high:
            ctx.event("High Volatility", 75, f"ATR spiked to {atr:.4f} ({ratio:.1f}x average)", 7)
        if atr < average * low and prev_atr >= prev_average * low:
            ctx.event("Low Volatility", 65, f"ATR compressed to {atr:.4f} ({ratio:.1f}x average)", 6)


class _ChannelEvaluator(SignalEvaluator):
    """Shared channel logic; subclasses set the breakout strength."""

    category = SignalCategory.VOLATILITY
    channel_label: str = ""
    breakout_strength: float = 80
    breakout_priority: int = 8

    def _evaluate(self, ctx: EvaluationContext) -> None:
        current = ctx.payload(self.name, BandValue)
        if current is None or not current.is_valid():
            return
        close = ctx.candle.close
        label = self.channel_label

        if close > current.middle:
            ctx.state(f"Above {label} Middle", 35, f"Close above {label} middle {current.middle:.2f}", 4)
        elif close < current.middle:
            ctx.state(f"Below {label} Middle", 35, f"Close below {label} middle {current.middle:.2f}", 4)

        previous = ctx.payload(self.name, BandValue, offset=1)
        prev_candle = ctx.candle_at(1)
        if previous is None or not previous.is_valid() or prev_candle is None or not prev_candle.is_valid():
            return
        prev_close = prev_candle.close

        if prev_close <= previous.upper and close > current.upper:
            ctx.event("Upper Breakout", self.breakout_strength, f"Close {close:.4f} broke above {label} upper {current.upper:.4f}", self.breakout_priority)
        if prev_close >= previous.lower and close < current.lower:
            ctx.event("Lower Breakdown", self.breakout_strength, f"Close {close:.4f} broke below {label} lower {current.lower:.4f}", self.breakout_priority)
        if crossed_above(close, current.middle, prev_close, previous.middle):
            ctx.event("Bullish Middle Cross", 70, f"Close crossed above {label} middle line", 7)
        if crossed_below(close, current.middle, prev_close, previous.middle):
            ctx.event("Bearish Middle Cross", 70, f"Close crossed below {label} middle line", 7)


class KeltnerEvaluator(_ChannelEvaluator):
    name = "keltner"
    signal_type = "keltner"
    required_series = ["keltner"]
    channel_label = "Keltner"
    breakout_strength = 80
    breakout_priority = 8


class DonchianEvaluator(_ChannelEvaluator):
    name = "donchian"
    signal_type = "donchian"
    required_series = ["donchian"]
    channel_label = "Donchian"
    breakout_strength = 85
    breakout_priority = 9


class TtmSqueezeEvaluator(SignalEvaluator):
    """
    TTM squeeze (Bollinger bands inside Keltner channel).

    A release fires only when the squeeze held for at least
    `min_squeeze_duration` bars before the release bar; direction comes from
    the sign of the momentum value on the release bar.
    """

    name = "ttm_squeeze"
    signal_type = "ttm_squeeze"
    category = SignalCategory.VOLATILITY
    required_series = ["ttm_squeeze"]

    def _squeeze_duration(self, ctx: EvaluationContext) -> int:
        """Consecutive squeeze bars ending at index - 1, capped at MAX_SQUEEZE_LOOKBACK."""
        duration = 0
        for offset in range(1, min(ctx.index, MAX_SQUEEZE_LOOKBACK) + 1):
            state = ctx.payload("ttm_squeeze", SqueezeValue, offset=offset)
            if state is None or not state.is_squeeze:
                break
            duration += 1
        return duration

    def _evaluate(self, ctx: EvaluationContext) -> None:
        min_duration = ctx.section.min_squeeze_duration
        if ctx.index < min_duration:
            return
        current = ctx.payload("ttm_squeeze", SqueezeValue)
        previous = ctx.payload("ttm_squeeze", SqueezeValue, offset=1)
        if current is None or previous is None:
            return

        duration = self._squeeze_duration(ctx)
        if current.is_squeeze:
            ctx.state("Squeeze On", 45, f"Squeeze active for {duration + 1} bars", 5)
        else:
            ctx.state("Squeeze Off", 25, "No active squeeze", 3)

        if current.is_squeeze or not previous.is_squeeze or duration < min_duration:
            return
        momentum = current.momentum
        if momentum is None:
            ctx.log(f"Squeeze released at {ctx.index} without momentum value", "warning")
            return
        if momentum > 0:
            ctx.event("Squeeze Release Bullish", 95, f"Squeeze released after {duration} bars with bullish momentum", 9)
        elif momentum < 0:
            ctx.event("Squeeze Release Bearish", 95, f"Squeeze released after {duration} bars with bearish momentum", 9)

