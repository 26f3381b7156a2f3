"""Backtest Report Generation - Human-readable performance reports.

Generates markdown reports and JSON summaries from backtest results.
"""

import json
import logging
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..models.positions import TradeAction
from .runner import BacktestResult


def _format_profit_factor(value: float) -> str:
    return "∞" if math.isinf(value) else f"{value:.2f}"


def _format_ts(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


class BacktestReport:
    """Generates human-readable reports from backtest results.

    Creates markdown reports with:
    - Executive summary
    - Performance metrics table
    - Per-symbol breakdown
    - Liquidations
    - Top closing trades

    Example:
        >>> report = BacktestReport()
        >>> report.generate_markdown(result, Path("reports/bt.md"))
    """

    def __init__(self):
        """Initialize report generator."""
        self.logger = logging.getLogger(__name__)

    def generate_markdown(
        self,
        result: BacktestResult,
        output_path: Optional[Path] = None,
    ) -> str:
        """Generate markdown report from backtest result.

        Args:
            result: BacktestResult to generate report from
            output_path: Optional path to save report (if None, returns string)

        Returns:
            Markdown report as string
        """
        md = self._build_markdown_report(result)

        if output_path:
            output_path = Path(output_path)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, "w") as f:
                f.write(md)
            self.logger.info(f"Markdown report saved to {output_path}")

        return md

    def _build_markdown_report(self, result: BacktestResult) -> str:
        metadata = result.metadata

        md = f"# Backtest Report: {', '.join(metadata.symbols) or 'no symbols'}\n\n"
        md += f"**Backtest ID:** `{metadata.run_id}`  \n"
        md += f"**Status:** {metadata.status.value}  \n"
        if metadata.error:
            md += f"**Error:** {metadata.error}  \n"
        if result.equity_curve:
            start = result.equity_curve[0].timestamp
            end = result.equity_curve[-1].timestamp
            md += f"**Period:** {_format_ts(start)} to {_format_ts(end)} UTC  \n"
        md += f"**Cycles:** {metadata.processed_cycles:,} / {metadata.total_cycles:,}  \n"
        md += f"**Generated:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}  \n\n"

        md += "## Executive Summary\n\n"
        md += self._build_executive_summary(result)
        md += "\n\n"

        md += "## Performance Metrics\n\n"
        md += self._build_metrics_table(result)
        md += "\n\n"

        if result.metrics.symbol_stats:
            md += "## Per-Symbol Breakdown\n\n"
            md += self._build_symbol_table(result)
            md += "\n\n"

        if result.metrics.liquidation_count:
            md += "## Liquidations\n\n"
            md += self._build_liquidations(result)
            md += "\n\n"

        closing = [t for t in result.trades if t.is_closing]
        if closing:
            md += "## Top 10 Closing Trades\n\n"
            md += self._build_top_trades_table(result)
            md += "\n\n"

        md += "## Configuration\n\n"
        md += "```json\n"
        md += json.dumps(result.config.to_dict(), indent=2)
        md += "\n```\n"

        return md

    def _build_executive_summary(self, result: BacktestResult) -> str:
        m = result.metrics

        if m.total_trades == 0 and m.liquidation_count == 0:
            verdict = "❌ **No trades closed**"
        elif m.total_return > 0 and m.sharpe_ratio > 1.0:
            verdict = "✅ **Profitable with good risk-adjusted returns**"
        elif m.total_return > 0:
            verdict = "⚠️ **Profitable but with moderate risk**"
        else:
            verdict = "❌ **Unprofitable**"

        summary = f"{verdict}\n\n"
        summary += f"- **Final Equity:** ${m.final_equity:,.2f}\n"
        summary += f"- **Total Return:** ${m.total_return:,.2f} ({m.total_return_pct:+.2f}%)\n"
        summary += f"- **Win Rate:** {m.win_rate:.1f}% ({m.winning_trades}/{m.total_trades} trades)\n"
        summary += f"- **Sharpe Ratio:** {m.sharpe_ratio:.2f}\n"
        summary += f"- **Max Drawdown:** {m.max_drawdown_pct:.1f}%\n"
        summary += f"- **Profit Factor:** {_format_profit_factor(m.profit_factor)}\n"

        return summary

    def _build_metrics_table(self, result: BacktestResult) -> str:
        m = result.metrics

        table = "| Metric | Value |\n"
        table += "|--------|-------|\n"

        # Returns
        table += f"| **Initial Balance** | ${result.config.initial_balance:,.2f} |\n"
        table += f"| **Final Equity** | ${m.final_equity:,.2f} |\n"
        table += f"| **Total Return** | {m.total_return_pct:+.2f}% |\n"

        # Trade Stats
        table += f"| **Total Trades** | {m.total_trades} |\n"
        table += f"| **Winning Trades** | {m.winning_trades} |\n"
        table += f"| **Losing Trades** | {m.losing_trades} |\n"
        table += f"| **Win Rate** | {m.win_rate:.1f}% |\n"
        table += f"| **Total Fees** | ${m.total_fees:,.2f} |\n"

        # P&L Distribution
        table += f"| **Average Win** | ${m.avg_win:.2f} |\n"
        table += f"| **Average Loss** | ${m.avg_loss:.2f} |\n"
        table += f"| **Largest Win** | ${m.largest_win:.2f} |\n"
        table += f"| **Largest Loss** | ${m.largest_loss:.2f} |\n"
        table += f"| **Profit Factor** | {_format_profit_factor(m.profit_factor)} |\n"

        # Risk Metrics
        table += f"| **Sharpe Ratio** | {m.sharpe_ratio:.2f} |\n"
        table += f"| **Sortino Ratio** | {m.sortino_ratio:.2f} |\n"
        table += f"| **Max Drawdown** | ${m.max_drawdown:,.2f} |\n"
        table += f"| **Max Drawdown %** | {m.max_drawdown_pct:.1f}% |\n"
        table += f"| **Liquidations** | {m.liquidation_count} |\n"

        return table

    def _build_symbol_table(self, result: BacktestResult) -> str:
        table = "| Symbol | Trades | Win Rate | Total P&L | Avg P&L | Long (win %) | Short (win %) |\n"
        table += "|--------|--------|----------|-----------|---------|--------------|---------------|\n"

        for symbol in sorted(result.metrics.symbol_stats):
            s = result.metrics.symbol_stats[symbol]
            table += (
                f"| {symbol} | {s.total_trades} | {s.win_rate:.1f}% | "
                f"${s.total_pnl:+,.2f} | ${s.avg_pnl:+,.2f} | "
                f"{s.long_trades} ({s.long_win_rate:.0f}%) | "
                f"{s.short_trades} ({s.short_win_rate:.0f}%) |\n"
            )

        return table

    def _build_liquidations(self, result: BacktestResult) -> str:
        m = result.metrics
        text = f"**{m.liquidation_count} liquidation(s)**, total loss ${m.liquidation_loss:,.2f}\n\n"
        for trade in result.trades:
            if trade.action == TradeAction.LIQUIDATED:
                text += f"- {_format_ts(trade.timestamp)} {trade.symbol} {trade.side.value}: {trade.note}\n"
        return text

    def _build_top_trades_table(self, result: BacktestResult) -> str:
        closing = [t for t in result.trades if t.is_closing]
        top_10 = sorted(closing, key=lambda t: t.realized_pnl, reverse=True)[:10]

        table = "| # | Time | Symbol | Side | Action | Price | Quantity | P&L |\n"
        table += "|---|------|--------|------|--------|-------|----------|-----|\n"

        for i, trade in enumerate(top_10, 1):
            pnl_emoji = "✅" if trade.realized_pnl > 0 else "❌"
            table += (
                f"| {i} | {_format_ts(trade.timestamp)} | {trade.symbol} | {trade.side.value} | "
                f"{trade.action.value} | ${trade.price:,.4f} | {trade.quantity:.6f} | "
                f"{pnl_emoji} ${trade.realized_pnl:+,.2f} |\n"
            )

        return table

    def generate_json_summary(self, result: BacktestResult) -> dict:
        """Generate JSON summary for programmatic access.

        An infinite profit factor (wins without losses) is reported as None so
        the summary stays valid JSON.

        Args:
            result: BacktestResult to summarize

        Returns:
            Dictionary with key metrics
        """
        m = result.metrics
        metadata = result.metadata

        period = None
        if result.equity_curve:
            period = {
                "start": result.equity_curve[0].timestamp,
                "end": result.equity_curve[-1].timestamp,
                "cycles": len(result.equity_curve),
            }

        return {
            "backtest_id": metadata.run_id,
            "status": metadata.status.value,
            "error": metadata.error,
            "symbols": list(metadata.symbols),
            "period": period,
            "returns": {
                "initial_balance": result.config.initial_balance,
                "final_equity": m.final_equity,
                "total_return": m.total_return,
                "total_return_pct": m.total_return_pct,
                "sharpe_ratio": m.sharpe_ratio,
                "sortino_ratio": m.sortino_ratio,
            },
            "risk": {
                "max_drawdown": m.max_drawdown,
                "max_drawdown_pct": m.max_drawdown_pct,
                "liquidation_count": m.liquidation_count,
                "liquidation_loss": m.liquidation_loss,
            },
            "trades": {
                "total": m.total_trades,
                "winning": m.winning_trades,
                "losing": m.losing_trades,
                "win_rate": m.win_rate,
                "total_fees": m.total_fees,
                "profit_factor": None if math.isinf(m.profit_factor) else m.profit_factor,
            },
        }
