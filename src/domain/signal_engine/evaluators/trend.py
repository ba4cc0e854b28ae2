"""
Trend Evaluators.

Provides:
- MacdEvaluator: MACD/signal relation, zero line, histogram, crosses
- EmaEvaluator: price vs EMA, fast/slow alignment and crosses
- Ma200Evaluator: long-term trend, golden/death cross, MA200 rejections
- IchimokuEvaluator: tenkan/kijun relation, kijun bounces, kumo position
- AdxEvaluator: trend strength bands and DI crossovers
- PsarEvaluator: SAR side and flips
- WmaEvaluator / TemaEvaluator / DemaEvaluator: single-MA price crosses
- HmaEvaluator: Hull MA position, slope and fast/slow relation
- MaRibbonEvaluator: ribbon order, width and order confirmations
"""

from __future__ import annotations

from typing import List

from ..models import SignalCategory
from ..payloads import AdxValue, IchimokuValue, MacdValue
from .base import EvaluationContext, SignalEvaluator, all_present, crossed_above, crossed_below


class MacdEvaluator(SignalEvaluator):
    """
    MACD line versus its signal line and the zero line.

    Series:
        macd: MacdValue records (histogram optional, derived when missing)
    """

    name = "macd"
    signal_type = "macd"
    category = SignalCategory.TREND
    required_series = ["macd"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        current = ctx.payload("macd", MacdValue)
        previous = ctx.payload("macd", MacdValue, offset=1)
        if current is None or previous is None or not current.is_valid() or not previous.is_valid():
            return

        diff = current.macd - current.signal
        if diff > 0:
            ctx.state("MACD Above Signal", 40 + min(30, abs(diff) * 100), f"MACD {current.macd:.4f} > signal {current.signal:.4f}", 6)
        elif diff < 0:
            ctx.state("MACD Below Signal", 40 + min(30, abs(diff) * 100), f"MACD {current.macd:.4f} < signal {current.signal:.4f}", 6)

        if current.macd > 0:
            ctx.state("MACD Above Zero", 35 + min(25, abs(current.macd) * 1000), "MACD line above zero", 5)
        elif current.macd < 0:
            ctx.state("MACD Below Zero", 35 + min(25, abs(current.macd) * 1000), "MACD line below zero", 5)

        histogram = current.histogram if current.histogram is not None else diff
        if histogram > 0:
            ctx.state("Positive Histogram", 30 + min(20, abs(histogram) * 500), f"Histogram {histogram:.4f}", 4)
        elif histogram < 0:
            ctx.state("Negative Histogram", 30 + min(20, abs(histogram) * 500), f"Histogram {histogram:.4f}", 4)

        if crossed_above(current.macd, current.signal, previous.macd, previous.signal):
            ctx.event("Bullish Cross", 80, "MACD crossed above signal line", 9)
        elif crossed_below(current.macd, current.signal, previous.macd, previous.signal):
            ctx.event("Bearish Cross", 80, "MACD crossed below signal line", 9)


class EmaEvaluator(SignalEvaluator):
    """
    Price versus EMA plus fast/slow EMA alignment.

    Series:
        ema: reference EMA for the price relation
        ema_fast, ema_slow: pair used for alignment and crosses
    """

    name = "ema"
    signal_type = "ema"
    category = SignalCategory.TREND

    def _evaluate(self, ctx: EvaluationContext) -> None:
        close = ctx.candle.close
        ema = ctx.value("ema")
        if ema is not None and ema > 0:
            distance = abs(close - ema) / ema
            if close > ema:
                ctx.state("Price Above EMA", 35 + min(40, distance * 1000), f"Close {close:.2f} above EMA {ema:.2f}", 6)
            elif close < ema:
                ctx.state("Price Below EMA", 35 + min(40, distance * 1000), f"Close {close:.2f} below EMA {ema:.2f}", 6)

        fast, slow = ctx.value("ema_fast"), ctx.value("ema_slow")
        if not all_present(fast, slow) or slow == 0:
            return

        spread = abs(fast - slow) / abs(slow)
        if fast > slow:
            ctx.state("Bullish EMA Alignment", 45 + min(30, spread * 1000), "Fast EMA above slow EMA", 7)
        elif fast < slow:
            ctx.state("Bearish EMA Alignment", 45 + min(30, spread * 1000), "Fast EMA below slow EMA", 7)

        prev_fast, prev_slow = ctx.value("ema_fast", 1), ctx.value("ema_slow", 1)
        if not all_present(prev_fast, prev_slow):
            return
        if crossed_above(fast, slow, prev_fast, prev_slow):
            ctx.event("Bullish Cross", 80, f"Fast EMA {fast:.2f} crossed above slow EMA {slow:.2f}", 9)
        elif crossed_below(fast, slow, prev_fast, prev_slow):
            ctx.event("Bearish Cross", 80, f"Fast EMA {fast:.2f} crossed below slow EMA {slow:.2f}", 9)


class Ma200Evaluator(SignalEvaluator):
    """
    Long-term trend filter around the 200-period moving average.

    Series:
        ma200: required
        ma_fast, ma100: optional, enable alignment and golden/death cross
    """

    name = "ma200"
    signal_type = "ma200"
    category = SignalCategory.TREND
    required_series = ["ma200"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        ma200, prev_ma200 = ctx.value("ma200"), ctx.value("ma200", 1)
        if not all_present(ma200, prev_ma200) or ma200 <= 0:
            return

        candle = ctx.candle
        close = candle.close
        distance = abs(close - ma200) / ma200
        if close > ma200:
            ctx.state("Price Above MA200", 40 + min(35, distance * 1000), f"Price {close:.2f} is above MA200 {ma200:.2f}", 6)
        elif close < ma200:
            ctx.state("Price Below MA200", 40 + min(35, distance * 1000), f"Price {close:.2f} is below MA200 {ma200:.2f}", 6)

        fast, ma100 = ctx.value("ma_fast"), ctx.value("ma100")
        if all_present(fast, ma100):
            if fast > ma200 and ma100 > ma200:
                ctx.state("Bullish MA Alignment", 55, "Fast MA and MA100 above MA200", 7)
            elif fast < ma200 and ma100 < ma200:
                ctx.state("Bearish MA Alignment", 55, "Fast MA and MA100 below MA200", 7)
            else:
                ctx.state("Mixed MA Alignment", 25, "Moving averages straddle MA200", 4)

        prev_fast = ctx.value("ma_fast", 1)
        if all_present(fast, prev_fast):
            if crossed_above(fast, ma200, prev_fast, prev_ma200):
                ctx.event("Golden Cross", 80, "Fast MA crossed above MA200", 9)
            elif crossed_below(fast, ma200, prev_fast, prev_ma200):
                ctx.event("Death Cross", 80, "Fast MA crossed below MA200", 9)

        previous = ctx.candle_at(1)
        if previous is None or not previous.is_valid():
            return
        prev_close = previous.close

        if crossed_above(close, ma200, prev_close, prev_ma200):
            ctx.event("price_cross_up", 80, "Price crossed above MA200", 8)
        elif crossed_below(close, ma200, prev_close, prev_ma200):
            ctx.event("price_cross_down", 80, "Price crossed below MA200", 8)

        if prev_close >= prev_ma200 and candle.low <= ma200 and close > ma200 and candle.is_bullish:
            strength = 75 + (10 if candle.lower_shadow > 1.5 * candle.body else 0)
            ctx.event("bullish_rejection", strength, "Price tested MA200 from above and held", 8)
        elif prev_close <= prev_ma200 and candle.high >= ma200 and close < ma200 and candle.is_bearish:
            strength = 75 + (10 if candle.upper_shadow > 1.5 * candle.body else 0)
            ctx.event("bearish_rejection", strength, "Price tested MA200 from below and was rejected", 8)


class IchimokuEvaluator(SignalEvaluator):
    """
    Ichimoku cloud.

    Falls back to the kijun line as the cloud proxy when the senkou spans
    are not supplied.
    """

    name = "ichimoku"
    signal_type = "Ichimoku"
    category = SignalCategory.TREND
    required_series = ["ichimoku"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        current = ctx.payload("ichimoku", IchimokuValue)
        if current is None or not current.is_valid():
            return
        previous = ctx.payload("ichimoku", IchimokuValue, offset=1)
        close = ctx.candle.close

        if current.tenkan > current.kijun:
            ctx.state("Bullish Ichimoku", 55, "Tenkan-sen above Kijun-sen", 6)
        elif current.tenkan < current.kijun:
            ctx.state("Bearish Ichimoku", 55, "Tenkan-sen below Kijun-sen", 6)

        if previous is not None and previous.is_valid():
            if crossed_above(current.tenkan, current.kijun, previous.tenkan, previous.kijun):
                ctx.event("Tenkan Above Kijun", 78, "Tenkan-sen crossed above Kijun-sen", 8)
            elif crossed_below(current.tenkan, current.kijun, previous.tenkan, previous.kijun):
                ctx.event("Tenkan Below Kijun", 78, "Tenkan-sen crossed below Kijun-sen", 8)

            prev_candle = ctx.candle_at(1)
            if prev_candle is not None and prev_candle.is_valid():
                if crossed_above(close, current.kijun, prev_candle.close, previous.kijun):
                    ctx.event("Kijun Bounce Bullish", 82, "Price reclaimed the Kijun-sen", 8)
                elif crossed_below(close, current.kijun, prev_candle.close, previous.kijun):
                    ctx.event("Kijun Bounce Bearish", 82, "Price lost the Kijun-sen", 8)

        if current.has_cloud:
            top = max(current.senkou_a, current.senkou_b)
            bottom = min(current.senkou_a, current.senkou_b)
            if close > top:
                ctx.state("Price Above Kumo", 65, f"Close {close:.2f} above cloud top {top:.2f}", 6)
            elif close < bottom:
                ctx.state("Price Below Kumo", 65, f"Close {close:.2f} below cloud bottom {bottom:.2f}", 6)
            else:
                ctx.state("Price In Kumo", 40, "Price inside the cloud", 4)
        elif close > current.kijun:
            ctx.state("Price Above Kumo", 45, "Kijun-sen used as cloud proxy", 5)
        elif close < current.kijun:
            ctx.state("Price Below Kumo", 45, "Kijun-sen used as cloud proxy", 5)


class AdxEvaluator(SignalEvaluator):
    """
    Average directional index.

    Strength bands come from settings (strong_trend / moderate_trend).
    """

    name = "adx"
    signal_type = "adx"
    category = SignalCategory.TREND
    required_series = ["adx"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        current = ctx.payload("adx", AdxValue)
        if current is None or not current.is_valid():
            return
        settings = ctx.section

        if current.adx >= settings.strong_trend:
            strength = 50 + min(30, (current.adx - settings.strong_trend) * 2)
            ctx.state("Strong Trend", strength, f"ADX {current.adx:.1f}", 7)
        elif current.adx >= settings.moderate_trend:
            ctx.state("Moderate Trend", 40, f"ADX {current.adx:.1f}", 5)
        else:
            ctx.state("Weak Trend", 25, f"ADX {current.adx:.1f}", 3)

        spread = current.pdi - current.mdi
        if spread > 0:
            ctx.state("Bullish Directional Movement", 40 + min(25, spread * 2), "+DI above -DI", 6)
        elif spread < 0:
            ctx.state("Bearish Directional Movement", 40 + min(25, -spread * 2), "-DI above +DI", 6)
        else:
            ctx.state("Neutral Directional Movement", 20, "+DI equals -DI", 3)

        previous = ctx.payload("adx", AdxValue, offset=1)
        if previous is None or not previous.is_valid():
            return
        if crossed_above(current.pdi, current.mdi, previous.pdi, previous.mdi):
            ctx.event("Bullish DI Crossover", 75, "+DI crossed above -DI", 8)
        elif crossed_below(current.pdi, current.mdi, previous.pdi, previous.mdi):
            ctx.event("Bearish DI Crossover", 75, "-DI crossed above +DI", 8)


class PsarEvaluator(SignalEvaluator):
    """Parabolic SAR side of price and flips."""

    name = "psar"
    signal_type = "psar"
    category = SignalCategory.TREND
    required_series = ["psar"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        sar = ctx.value("psar")
        close = ctx.candle.close
        if sar is None or close <= 0:
            return

        strength = 50 + min(35, abs(close - sar) / close * 500)
        if sar < close:
            ctx.state("Uptrending", strength, f"SAR {sar:.2f} below price", 7)
        elif sar > close:
            ctx.state("Downtrending", strength, f"SAR {sar:.2f} above price", 7)

        prev_sar = ctx.value("psar", 1)
        previous = ctx.candle_at(1)
        if prev_sar is None or previous is None or not previous.is_valid():
            return
        if sar < close and prev_sar >= previous.close:
            ctx.event("PSAR Flip Bullish", 85, "SAR flipped below price", 9)
        elif sar > close and prev_sar <= previous.close:
            ctx.event("PSAR Flip Bearish", 85, "SAR flipped above price", 9)


class _SingleAverageEvaluator(SignalEvaluator):
    """Price crossing one moving average; subclasses set labels and strengths."""

    category = SignalCategory.TREND
    cross_strength: float = 70
    state_strength: float = 45

    def _evaluate(self, ctx: EvaluationContext) -> None:
        average = ctx.value(self.name)
        if average is None:
            return
        close = ctx.candle.close
        label = self.signal_type

        if close > average:
            ctx.state(f"Price Above {label}", self.state_strength, f"Close {close:.2f} above {label} {average:.2f}", 5)
        elif close < average:
            ctx.state(f"Price Below {label}", self.state_strength, f"Close {close:.2f} below {label} {average:.2f}", 5)

        prev_average = ctx.value(self.name, 1)
        previous = ctx.candle_at(1)
        if prev_average is None or previous is None or not previous.is_valid():
            return
        if crossed_above(close, average, previous.close, prev_average):
            ctx.event("price_cross_up", self.cross_strength, f"Price crossed above {label}", 8)
        elif crossed_below(close, average, previous.close, prev_average):
            ctx.event("price_cross_down", self.cross_strength, f"Price crossed below {label}", 8)


class WmaEvaluator(_SingleAverageEvaluator):
    name = "wma"
    signal_type = "WMA"
    required_series = ["wma"]
    cross_strength = 72
    state_strength = 45


class TemaEvaluator(_SingleAverageEvaluator):
    name = "tema"
    signal_type = "TEMA"
    required_series = ["tema"]
    cross_strength = 74
    state_strength = 48


class DemaEvaluator(_SingleAverageEvaluator):
    name = "dema"
    signal_type = "DEMA"
    required_series = ["dema"]
    cross_strength = 70
    state_strength = 46


class HmaEvaluator(SignalEvaluator):
    """
    Hull moving average.

    Series:
        hma: main Hull MA
        hma_10: optional fast Hull MA
    """

    name = "hma"
    signal_type = "hma"
    category = SignalCategory.TREND
    required_series = ["hma"]

    def _evaluate(self, ctx: EvaluationContext) -> None:
        hma = ctx.value("hma")
        if hma is None or hma <= 0:
            return
        close = ctx.candle.close

        distance = abs(close - hma) / hma
        if close > hma:
            ctx.state("Price Above HMA", 40 + min(35, distance * 1000), f"Close {close:.2f} above HMA {hma:.2f}", 6)
        elif close < hma:
            ctx.state("Price Below HMA", 40 + min(35, distance * 1000), f"Close {close:.2f} below HMA {hma:.2f}", 6)

        prev_hma = ctx.value("hma", 1)
        if prev_hma is not None and prev_hma > 0:
            change = abs(hma - prev_hma) / prev_hma
            if hma > prev_hma:
                ctx.state("HMA Rising Trend", 30 + min(40, change * 1000), "HMA sloping up", 5)
            elif hma < prev_hma:
                ctx.state("HMA Falling Trend", 30 + min(40, change * 1000), "HMA sloping down", 5)

        fast = ctx.value("hma_10")
        if fast is not None:
            spread = abs(hma - fast) / hma
            if hma > fast:
                ctx.state("HMA Above HMA10", 35 + min(30, spread * 1000), "HMA above HMA10", 6)
            elif hma < fast:
                ctx.state("HMA Below HMA10", 35 + min(30, spread * 1000), "HMA below HMA10", 6)


RIBBON_KEYS = ["ma10", "ma20", "ma30", "ma40", "ma50", "ma60"]


def _ribbon_order(values: List[float]) -> int:
    """1 for strictly descending (fast above slow), -1 for strictly ascending, else 0."""
    pairs = list(zip(values, values[1:]))
    if all(a > b for a, b in pairs):
        return 1
    if all(a < b for a, b in pairs):
        return -1
    return 0


class MaRibbonEvaluator(SignalEvaluator):
    """
    Moving-average ribbon ma10..ma60.

    Alignment states describe the current order; confirmation events fire
    on the bar where a full bullish or bearish order first forms.
    """

    name = "maribbon"
    signal_type = "maribbon"
    category = SignalCategory.TREND
    required_series = RIBBON_KEYS

    def _evaluate(self, ctx: EvaluationContext) -> None:
        values = [ctx.value(key) for key in RIBBON_KEYS]
        if not all_present(*values):
            return

        order = _ribbon_order(values)
        if order > 0:
            ctx.state("Bullish Alignment", 70, "All MAs are in bullish order", 8)
        elif order < 0:
            ctx.state("Bearish Alignment", 70, "All MAs are in bearish order", 8)
        else:
            ctx.state("Mixed Alignment", 25, "MAs are tangled", 3)

        prev_values = [ctx.value(key, 1) for key in RIBBON_KEYS]
        if not all_present(*prev_values):
            return

        settings = ctx.section
        if values[-1] != 0 and prev_values[-1] != 0:
            width = abs(values[0] - values[-1]) / abs(values[-1])
            prev_width = abs(prev_values[0] - prev_values[-1]) / abs(prev_values[-1])
            if width > prev_width * settings.expansion_ratio:
                ctx.state("Expanding", 50, f"Ribbon width {width:.2%}", 6)
            elif width < prev_width * settings.contraction_ratio:
                ctx.state("Contracting", 40, f"Ribbon width {width:.2%}", 5)

        prev_order = _ribbon_order(prev_values)
        if order > 0 and prev_order <= 0:
            ctx.event("Uptrend Confirmation", 75, "Ribbon turned fully bullish", 8)
        elif order < 0 and prev_order >= 0:
            ctx.event("Downtrend Confirmation", 75, "Ribbon turned fully bearish", 8)
