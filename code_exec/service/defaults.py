"""
Built-in tool catalog.
Module: code_exec/service/defaults.py
"""

import json
import random
import uuid
from typing import List

from .models import Tool

WEATHER_IMPLEMENTATION = '''
# Simulated weather fetch
temperature = random.randint(10, 39)
condition = random.choice(["Sunny", "Cloudy", "Rainy", "Windy"])

return {
    "location": args["location"],
    "temperature": temperature,
    "unit": args.get("unit") or "celsius",
    "condition": condition,
    "note": "This is simulated data.",
}
'''

CALCULATOR_IMPLEMENTATION = '''
namespace = {k: v for k, v in vars(math).items() if not k.startswith("_")}
namespace.update({"abs": abs, "round": round, "min": min, "max": max, "pow": pow})
try:
    result = eval(str(args["expression"]), {"__builtins__": {}}, namespace)
    return {"expression": args["expression"], "result": result}
except Exception:
    return {"error": "Invalid expression"}
'''

STOCK_PRICE_IMPLEMENTATION = '''
return {
    "ticker": args["ticker"],
    "price": round(random.uniform(0, 1000), 2),
    "currency": "USD",
    "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
}
'''


def _schema(properties: dict, required: List[str]) -> str:
    return json.dumps(
        {"type": "OBJECT", "properties": properties, "required": required}, indent=2
    )


def default_tools() -> List[Tool]:
    """Return a fresh copy of the built-in catalog."""
    return [
        Tool(
            id="weather-tool",
            name="get_current_weather",
            description="Get the current weather in a given location",
            enabled=True,
            parameters=_schema(
                {
                    "location": {
                        "type": "STRING",
                        "description": "The city and state, e.g. San Francisco, CA",
                    },
                    "unit": {
                        "type": "STRING",
                        "enum": ["celsius", "fahrenheit"],
                        "description": "The temperature unit",
                    },
                },
                ["location"],
            ),
            implementation=WEATHER_IMPLEMENTATION,
        ),
        Tool(
            id="calc-tool",
            name="calculator",
            description="Perform basic mathematical calculations",
            enabled=True,
            parameters=_schema(
                {
                    "expression": {
                        "type": "STRING",
                        "description": (
                            "The mathematical expression to evaluate, "
                            "e.g. '2 + 2' or 'sqrt(16)'"
                        ),
                    }
                },
                ["expression"],
            ),
            implementation=CALCULATOR_IMPLEMENTATION,
        ),
        Tool(
            id="stock-tool",
            name="get_stock_price",
            description="Get the current stock price for a given ticker symbol",
            # Disabled so the catalog shows a toggled-off tool
            enabled=False,
            parameters=_schema(
                {
                    "ticker": {
                        "type": "STRING",
                        "description": "The stock ticker symbol, e.g. AAPL, GOOGL",
                    }
                },
                ["ticker"],
            ),
            implementation=STOCK_PRICE_IMPLEMENTATION,
        ),
    ]


def new_tool_template() -> Tool:
    """A placeholder tool for the editor's "add tool" action."""
    return Tool(
        id=str(uuid.uuid4()),
        name=f"new_tool_{random.randint(0, 999)}",
        description="Description of the new tool",
        parameters=json.dumps(
            {"type": "OBJECT", "properties": {"arg1": {"type": "STRING"}}}, indent=2
        ),
        implementation='return {"message": "Hello " + str(args.get("arg1"))}',
        enabled=True,
    )
