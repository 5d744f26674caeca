#!/usr/bin/env python
"""
Example: Walk through the strategy wizard against the paper backend.

Creates a strategy instance with one buy and one sell indicator, then
reopens it in edit mode, swaps the buy indicator and submits again.

Usage:
    python run_wizard_example.py
"""

import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from api.models import IndicatorSide
from engine.steps import StepId
from services.logging_service import configure_structured_logging
from services.paper_backend import PaperStrategyBackend
from services.wizard_controller import StrategyWizardController


async def run() -> None:
    backend = PaperStrategyBackend()
    created = []

    print("=" * 60)
    print("Strategy Wizard Example")
    print("=" * 60)

    print("\n1. Creating a strategy...")
    wizard = StrategyWizardController(backend, on_complete=created.append, search_debounce_seconds=0.05)
    await wizard.load_lookups()
    print(f"   API key: {wizard.session.step_data(StepId.SYMBOL).api_key}")

    wizard.enter_custom_symbol("btc")
    await wizard.search.wait_idle()
    print(f"   Search results for 'btc': {[s.symbol for s in wizard.search.display_symbols]}")
    wizard.select_symbol(wizard.search.display_symbols[0])
    await wizard.handle_next()

    wizard.update_step_data({
        "operation_percentage": "10",
        "max_allocated_value": "1000",
        "simultaneous_operations": "2",
        "interval_between_operations": "15",
        "buy_quantity_condition": "1",
        "sell_quantity_condition": "1",
    })
    wizard.add_indicator(IndicatorSide.BUY, "RSI oversold", mandatory=True)
    wizard.add_indicator(IndicatorSide.SELL, "RSI overbought")
    await wizard.handle_next()

    wizard.update_step_data({"strategy_name": "BTC swing", "strategy_description": "RSI based swing trading"})
    print(f"   Webhook buy message: {wizard.webhook_messages()['buy']}")
    if not await wizard.handle_next():
        print(f"❌ Submit failed: {wizard.submit_error}")
        return
    instance = backend.instances[created[0]]
    print(f"✅ Created instance {instance.id} ({instance.name} on {instance.symbol})")

    print("\n2. Editing the strategy...")
    editor = StrategyWizardController(backend, instance_to_edit=instance, search_debounce_seconds=0.05)
    await editor.start()
    old_buy = editor.session.step_data(StepId.CONFIGURATION).buy_indicators[0]
    editor.go_to(StepId.CONFIGURATION)
    editor.remove_indicator(IndicatorSide.BUY, old_buy.id)
    editor.add_indicator(IndicatorSide.BUY, "MACD cross")
    editor.go_to(StepId.REVIEW)
    if not await editor.handle_next():
        print(f"❌ Submit failed: {editor.submit_error}")
        return
    print(f"✅ Indicator sync: +{len(editor.last_sync.added)} / -{len(editor.last_sync.removed)}")

    print("\n" + "=" * 60)
    print("Backend calls")
    print("=" * 60)
    for operation, _argument in backend.calls_of(
        "create_strategy_instance", "update_strategy_instance", "add_indicator", "remove_indicator"
    ):
        print(f"  - {operation}")


def main():
    configure_structured_logging("WARNING")
    asyncio.run(run())


if __name__ == "__main__":
    main()
