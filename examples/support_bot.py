#!/usr/bin/env python3
"""
Example: Support Bot - Build, Edit and Simulate

This example assembles a small support conversation with the editing API,
undoes a mistake, exports the flow, and then plays the conversation through
the simulation interpreter with scripted user replies.

Key concepts covered:
- Creating blocks from a dragged connection (create-and-connect)
- Splicing a block into an existing connection (insert-between)
- Undo/redo of whole editing gestures
- Running the flow as a chat session on the asyncio event loop

Run with:
    python examples/support_bot.py
"""

import asyncio
import logging

from chatflow_builder import (
    BlockType,
    ConnectionRouter,
    GraphStore,
    SimulationConfig,
    SimulationEventKind,
    SimulationInterpreter,
    SimulationMode,
    export_graphviz,
)


async def main():
    """Demonstrate building and simulating a support conversation."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 70)
    print("SUPPORT BOT: Build, Edit and Simulate")
    print("=" * 70)

    store = GraphStore()
    router = ConnectionRouter(store)

    # ==========================================
    # STEP 1: Build the conversation
    # ==========================================
    print("\n1. Building the conversation...")

    router.start_connecting("start", "output")
    question = router.create_and_connect(BlockType.QUESTION, (400, 150))
    store.update_block_data(question.id, {"message": "What's your name?", "variableName": "name"})

    router.start_connecting(question.id, "output")
    menu = router.create_and_connect(BlockType.BUTTONS, (650, 150))
    store.update_block_data(
        menu.id,
        {
            "message": "How can we help?",
            "options": [{"text": "Billing"}, {"text": "Technical issue"}],
            "variableName": "topic",
        },
    )
    billing, technical = store.get_block(menu.id).output_handles

    router.start_connecting(menu.id, billing)
    router.open_create_menu((900, 50))
    billing_reply = router.choose_block_type(BlockType.MESSAGE)
    store.update_block_data(billing_reply.id, {"message": "Billing will email you shortly."})

    router.start_connecting(menu.id, technical)
    goodbye = router.create_and_connect(BlockType.GOODBYE, (900, 250))
    store.update_block_data(goodbye.id, {"message": "Thanks, a technician is on it!"})

    print(f"  Blocks: {store.block_count}, connections: {store.connection_count}")

    # ==========================================
    # STEP 2: Edit with undo/redo
    # ==========================================
    print("\n2. Inserting a Field block, then undoing and redoing it...")

    splice = store.outgoing(question.id)[0]
    field = router.insert_between(splice.id, BlockType.FIELD, (525, 300))
    store.update_block_data(field.id, {"variableName": "customer"})
    print(f"  After insert: {store.block_count} blocks")

    store.undo()
    store.undo()
    print(f"  After two undos: {store.block_count} blocks")

    store.redo()
    store.redo()
    print(f"  After two redos: {store.block_count} blocks")

    # ==========================================
    # STEP 3: Export
    # ==========================================
    print("\n3. GraphViz export:")
    print(export_graphviz(store))

    # ==========================================
    # STEP 4: Simulate
    # ==========================================
    print("\n4. Simulating the conversation...")

    interpreter = SimulationInterpreter(config=SimulationConfig(message_delay=0.2, reply_delay=0.1))
    stream = interpreter.start(store.snapshot)

    async for event in stream:
        if event.kind is SimulationEventKind.ENDED:
            break
        if event.kind is SimulationEventKind.ENTRY_ADDED:
            print(f"  [{event.entry.author.value}] {event.entry.content}")
            for choice in event.entry.choices:
                print(f"      ( ) {choice.label}")
        if event.mode is SimulationMode.AWAITING_TEXT:
            interpreter.submit_text("Ada")
        elif event.mode is SimulationMode.AWAITING_BUTTON:
            interpreter.select_option(event.entry.choices[-1].option_id)

    print(f"\n  Captured variables: {interpreter.state.variables}")

    print("\n" + "=" * 70)
    print("✓ Support bot example completed successfully!")
    print("=" * 70)


if __name__ == "__main__":
    asyncio.run(main())
