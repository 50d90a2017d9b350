"""AI analysis over litellm."""

from brokerlink.insights.analysis import InsightsClient, analyze_json, complete, portfolio_context

__all__ = ["InsightsClient", "analyze_json", "complete", "portfolio_context"]
