"""
Fixed-rule answers used when no external model is configured
(or ASSISTANT_MODE=fallback), plus the canned texts the pipeline
falls back to when a stage fails.
"""

from datetime import datetime
from typing import Dict, Tuple

ANALYSIS_COMPLETE = "analysis_complete"

DEFAULT_SUGGESTIONS: Tuple[str, ...] = (
    "Analyze low stock items",
    "Predict drug demand trends",
    "Find cost-saving opportunities",
    "Generate comprehensive report",
    "Show patient medication patterns",
)

RETRY_SUGGESTIONS: Tuple[str, ...] = (
    "Show inventory summary",
    "List recent uploads",
    "Display basic statistics",
)

GENERATION_APOLOGY = (
    "I'm currently experiencing technical difficulties. "
    "Please try a simpler query or check back later."
)

SYNTHESIS_APOLOGY = (
    "I ran the analysis but could not put the results into words right now. "
    "Please try again in a moment."
)

REPORT_QUERY = """Generate a comprehensive healthcare analytics report covering:
1. Inventory optimization recommendations
2. Drug demand predictions for next 3 months
3. Cost-saving opportunities
4. Patient medication trend analysis
5. Supply chain risk assessment
Please include detailed insights."""

# checked in order, first keyword found wins
KEYWORD_RESPONSES: Tuple[Tuple[str, str], ...] = (
    (
        "inventory",
        "Based on your current inventory data, I recommend focusing on drugs with low stock levels. "
        "Would you like me to generate a detailed inventory optimization report?",
    ),
    (
        "patient",
        "I can help analyze patient data patterns. What specific insights are you looking for "
        "regarding patient medications or outcomes?",
    ),
    (
        "cost",
        "Cost analysis shows potential savings through better inventory management. "
        "I can generate a cost optimization analysis if needed.",
    ),
    (
        "predict",
        "Predictive analytics indicate seasonal variations in drug demand. "
        "I can create forecasting models based on your historical data.",
    ),
)

DEFAULT_RESPONSE = (
    "I'm analyzing your request. I can help with inventory levels, patient medication "
    "patterns, cost optimization and demand prediction."
)


def keyword_response(message: str) -> str:
    lowered = message.lower()
    for keyword, response in KEYWORD_RESPONSES:
        if keyword in lowered:
            return response
    return DEFAULT_RESPONSE


def build_static_report(counts: Dict[str, int], generated_at: datetime) -> str:
    return f"""# DeepScanRx Healthcare Analytics Report
Generated: {generated_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip()}

## Executive Summary
- Total Patients: {counts.get("patients", 0)}
- Total Inventory Items: {counts.get("inventory", 0)}
- System Status: Operational

## Key Findings
1. **Inventory Management**: Current stock levels require attention for optimal efficiency
2. **Patient Care**: Medication patterns show standard healthcare delivery
3. **Cost Optimization**: Opportunities exist for bulk purchasing and stock optimization

## Recommendations
1. Implement automated reorder points for critical medications
2. Review high-value inventory items for cost reduction opportunities
3. Establish supplier relationships for bulk purchasing discounts
4. Monitor patient medication trends for demand forecasting

*Note: Enhanced AI analysis requires OpenAI API configuration*"""
