"""
Finance tools.

``finance.tax.calculate`` applies the tenant market's national VAT/GST rate.
Markets without a single rate (US sales tax varies by state) are not supported.
"""
from typing import Any, Dict, List

from dependify.services.ai.markets import get_market, markets_with_fixed_tax_rate
from dependify.services.ai.registry import ToolDefinition
from dependify.services.ai.schema import CostProfile, TenantContext, ToolCategory

TAX_CALCULATE_ID = "finance.tax.calculate"


def calculate_tax(amount: float, rate: float, inclusive: bool = False) -> Dict[str, float]:
    """
    Split an amount into net, tax and gross at ``rate``.

    Args:
        amount: Amount to tax
        rate: Tax rate as a fraction (0.075 for 7.5%)
        inclusive: Whether ``amount`` already includes tax
    """
    if inclusive:
        gross = amount
        net = amount / (1 + rate)
    else:
        net = amount
        gross = amount * (1 + rate)
    return {
        "netAmount": round(net, 2),
        "taxAmount": round(gross - net, 2),
        "grossAmount": round(gross, 2),
    }


async def _tax_calculate(input: Dict[str, Any], context: TenantContext) -> Dict[str, Any]:
    market = get_market(context.market)
    if market.tax_rate is None:
        raise ValueError(f"{market.name} has no single {market.tax_label} rate")

    amount = input.get("amount")
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise ValueError("amount must be a number")
    if amount < 0:
        raise ValueError("amount must not be negative")
    inclusive = bool(input.get("inclusive", False))

    return {
        "market": market.code.value,
        "currency": market.currency,
        "currencySymbol": market.currency_symbol,
        "taxLabel": market.tax_label,
        "taxRate": market.tax_rate,
        "inclusive": inclusive,
        **calculate_tax(float(amount), market.tax_rate, inclusive),
    }


def tax_calculate_tool() -> ToolDefinition:
    return ToolDefinition(
        id=TAX_CALCULATE_ID,
        name="Calculate Tax",
        description=(
            "Calculate VAT/GST for an amount using the business's national tax rate. "
            "Returns net, tax and gross amounts in the local currency."
        ),
        category=ToolCategory.FINANCE,
        handler=_tax_calculate,
        input_schema={
            "properties": {
                "amount": {"type": "number", "description": "Amount in the local currency"},
                "inclusive": {
                    "type": "boolean",
                    "description": "True if the amount already includes tax (default false)",
                },
            },
            "required": ["amount"],
        },
        market_support=frozenset(markets_with_fixed_tax_rate()),
        output_schema={
            "properties": {
                "netAmount": {"type": "number"},
                "taxAmount": {"type": "number"},
                "grossAmount": {"type": "number"},
                "taxLabel": {"type": "string"},
                "taxRate": {"type": "number"},
                "currency": {"type": "string"},
            },
        },
        cost_profile=CostProfile.FREE,
    )


def finance_tools() -> List[ToolDefinition]:
    return [tax_calculate_tool()]
