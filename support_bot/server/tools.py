"""
Tools Module.

Backend lookups the agent may call, defined as LangChain tools over an
in-memory mock dataset. Nothing here mutates state.
"""

from typing import Any, Dict, List

from langchain_core.tools import BaseTool, tool
from langchain_core.utils.function_calling import convert_to_openai_tool


MOCK_DATABASE: Dict[str, Dict[str, Dict[str, Any]]] = {
    "orders": {
        "ORD-123": {"status": "Shipped", "delivery_date": "2023-10-25"},
        "ORD-456": {"status": "Processing", "delivery_date": "TBD"},
        "ORD-789": {"status": "Delivered", "delivery_date": "2023-10-20"},
    },
    "accounts": {
        "user_main": {"balance": 1250.50, "currency": "USD", "plan": "Premium"},
    },
}

CURRENT_ACCOUNT = "user_main"

ORDER_NOT_FOUND = {"status": "Order not found."}
FUNCTION_NOT_FOUND = {"error": "Function not found"}


def _normalize_order_id(order_id: str) -> str:
    """'#ord-123 ' -> 'ORD-123'"""
    return order_id.strip().lstrip("#").strip().upper()


# ============================================================================
# TOOLS
# ============================================================================

@tool
def get_order_status(order_id: str) -> Dict[str, Any]:
    """Get the status and delivery date of a customer order.

    Args:
        order_id: The order ID (e.g., ORD-123)
    """
    order = MOCK_DATABASE["orders"].get(_normalize_order_id(order_id))
    if order is None:
        print(f"[Tools] Order lookup miss: {order_id!r}")
        return dict(ORDER_NOT_FOUND)
    return dict(order)


@tool
def get_account_balance() -> Dict[str, Any]:
    """Get the current account balance and plan details."""
    return dict(MOCK_DATABASE["accounts"][CURRENT_ACCOUNT])


# ============================================================================
# REGISTRY
# ============================================================================

TOOLS: List[BaseTool] = [
    get_order_status,
    get_account_balance,
]

TOOL_REGISTRY: Dict[str, BaseTool] = {t.name: t for t in TOOLS}


def execute_tool(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """
    Resolve a tool by name and run it synchronously.

    Unknown names and arguments that fail the tool schema come back as
    structured error results instead of raising, so a bad call from the
    model never aborts the turn.

    Args:
        name: Tool name as requested by the model
        arguments: Argument mapping for the tool

    Returns:
        The tool's result mapping, or an error mapping
    """
    selected = TOOL_REGISTRY.get(name)
    if selected is None:
        print(f"[Tools] ⚠️ Unknown tool requested: {name}")
        return dict(FUNCTION_NOT_FOUND)

    print(f"[Tools] Executing {name} with args: {arguments}")
    try:
        return selected.invoke(arguments or {})
    except ValueError as e:
        # pydantic.ValidationError is a ValueError
        print(f"[Tools] ⚠️ Invalid arguments for {name}: {e}")
        return {"error": f"Invalid arguments for {name}"}


def describe_tools() -> List[Dict[str, Any]]:
    """Name, description and JSON schema of every registered tool."""
    described = []
    for registered in TOOLS:
        function = convert_to_openai_tool(registered)["function"]
        described.append({
            "name": function["name"],
            "description": function.get("description", ""),
            "parameters": function.get("parameters", {}),
        })
    return described
