"""
Tests for GraphStore: block/connection mutations, selection, dragging,
batching and undo/redo integration.
"""

import pytest

from chatflow_builder import (
    BlockNotFoundError,
    BlockType,
    ConnectionNotFoundError,
    EditorConfig,
    GraphStore,
    HandleRef,
    Position,
)
from chatflow_builder.graph import seed_snapshot


def _message(store: GraphStore, x: float = 300, y: float = 150):
    return store.add_block(BlockType.MESSAGE, (x, y))


class TestSeedGraph:
    """Tests for the state every session starts in."""

    def test_seed_has_single_welcome(self, store):
        """Test that a new store contains only the seed Welcome block."""
        assert store.block_count == 1
        assert store.connection_count == 0

        welcome = store.get_block("start")
        assert welcome.type is BlockType.WELCOME
        assert welcome.position == Position(x=150, y=150)
        assert welcome.data.message == "Welcome to our chatbot!"

    def test_seed_follows_config(self):
        """Test that seed values come from EditorConfig."""
        config = EditorConfig(seed_welcome_id="hello", seed_welcome_message="Hi there")
        store = GraphStore(config)

        assert store.get_block("hello").data.message == "Hi there"
        assert store.history.current == seed_snapshot(config)

    def test_initial_snapshot_overrides_seed(self, block):
        """Test starting from an explicit snapshot."""
        initial = seed_snapshot().model_copy(
            update={"blocks": (block("w", BlockType.WELCOME, message="Hey"),)}
        )
        store = GraphStore(initial=initial)

        assert [b.id for b in store.blocks] == ["w"]
        assert not store.can_undo


class TestAddBlock:
    """Tests for add_block."""

    def test_add_block_uses_defaults(self, store):
        """Test that new blocks get type defaults and a unique id."""
        block = store.add_block(BlockType.QUESTION, (10, 20))

        assert block is not None
        assert block.id.startswith("question-")
        assert block.position == Position(x=10, y=20)
        assert block.data.message == "Your question here..."
        assert store.block_exists(block.id)
        assert store.can_undo

    def test_add_block_accepts_type_name(self, store):
        """Test that the type can be given as its name."""
        block = store.add_block("Buttons", (0, 0))

        assert block.type is BlockType.BUTTONS
        assert len(block.output_handles) == 2

    def test_second_welcome_is_ignored(self, store):
        """Test that at most one Welcome block can exist."""
        assert store.add_block(BlockType.WELCOME, (0, 0)) is None
        assert store.block_count == 1
        assert not store.can_undo

    def test_welcome_allowed_after_removal(self, store):
        """Test that a Welcome block can be re-added once the old one is gone."""
        store.remove_block("start")

        assert store.add_block(BlockType.WELCOME, (0, 0)) is not None

    def test_unknown_type_is_ignored(self, store):
        """Test that unrecognized types produce no change."""
        assert store.add_block("Carousel", (0, 0)) is None
        assert len(store.history) == 1


class TestUpdateBlockData:
    """Tests for update_block_data."""

    def test_partial_update_merges(self, store):
        """Test that only given fields change."""
        block = store.add_block(BlockType.QUESTION, (0, 0))

        updated = store.update_block_data(block.id, {"variableName": "email"})

        assert updated.data.variable_name == "email"
        assert updated.data.message == "Your question here..."
        assert store.get_block(block.id).data.variable_name == "email"

    def test_field_names_are_accepted(self, store):
        """Test that snake_case field names work as well as camelCase."""
        block = store.add_block(BlockType.FIELD, (0, 0))

        store.update_block_data(block.id, {"variable_name": "city"})

        assert store.get_block(block.id).data.variable_name == "city"

    def test_unknown_block_is_ignored(self, store):
        """Test updating a missing block."""
        assert store.update_block_data("nope", {"message": "x"}) is None
        assert len(store.history) == 1

    def test_unchanged_payload_does_not_commit(self, store):
        """Test that writing the same values leaves history alone."""
        length = len(store.history)

        store.update_block_data("start", {"message": "Welcome to our chatbot!"})

        assert len(store.history) == length

    def test_invalid_buttons_payload_is_rejected(self, store):
        """Test that Buttons updates must keep 1 to 5 options."""
        block = store.add_block(BlockType.BUTTONS, (0, 0))
        length = len(store.history)

        assert store.update_block_data(block.id, {"options": []}) is None
        assert (
            store.update_block_data(block.id, {"options": [{"text": str(i)} for i in range(6)]})
            is None
        )
        assert len(store.history) == length
        assert len(store.get_block(block.id).data.options) == 2

    def test_removed_option_drops_its_connections(self, store):
        """Test that connections from a deleted option are removed in the same commit."""
        buttons = store.add_block(BlockType.BUTTONS, (0, 0))
        first, second = buttons.data.options
        a = _message(store)
        b = _message(store)
        store.add_connection((buttons.id, first.id), (a.id, "input"))
        store.add_connection((buttons.id, second.id), (b.id, "input"))
        length = len(store.history)

        store.update_block_data(buttons.id, {"options": [first.model_dump()]})

        assert len(store.history) == length + 1
        assert [c.target.block_id for c in store.connections] == [a.id]

    def test_added_option_gets_fresh_id(self, store):
        """Test that an option without id is assigned one."""
        buttons = store.add_block(BlockType.BUTTONS, (0, 0))
        options = [o.model_dump() for o in buttons.data.options] + [{"text": "Option 3"}]

        updated = store.update_block_data(buttons.id, {"options": options})

        assert len(updated.output_handles) == 3
        assert all(updated.output_handles)


class TestRemoveBlock:
    """Tests for remove_block."""

    def test_remove_cascades_connections(self, store):
        """Test that removing a block removes every connection touching it."""
        a = _message(store)
        b = _message(store)
        store.add_connection(("start", "output"), (a.id, "input"))
        store.add_connection((a.id, "output"), (b.id, "input"))
        length = len(store.history)

        store.remove_block(a.id)

        assert not store.block_exists(a.id)
        assert store.connection_count == 0
        assert len(store.history) == length + 1

    def test_remove_middle_of_chain(self, store):
        """Test A -> B -> C with B removed leaves A and C unconnected."""
        a = _message(store)
        b = _message(store)
        c = _message(store)
        store.add_connection((a.id, "output"), (b.id, "input"))
        store.add_connection((b.id, "output"), (c.id, "input"))

        store.remove_block(b.id)

        assert {blk.id for blk in store.blocks} == {"start", a.id, c.id}
        assert store.connection_count == 0

    def test_undo_restores_block_and_connections(self, store):
        """Test that a cascading delete is undone in one step."""
        a = _message(store)
        store.add_connection(("start", "output"), (a.id, "input"))
        before = store.snapshot

        store.remove_block(a.id)
        store.undo()

        assert store.snapshot == before

    def test_remove_unknown_is_ignored(self, store):
        """Test removing a missing block."""
        store.remove_block("missing")

        assert len(store.history) == 1

    def test_remove_clears_selection_and_focus(self, store):
        """Test that a removed block leaves no dangling UI state."""
        a = _message(store)
        store.toggle_selection(a.id)
        store.set_active_block(a.id)

        store.remove_block(a.id)

        assert store.selected_block_ids == ()
        assert store.active_block_id is None


class TestConnections:
    """Tests for add_connection / remove_connection."""

    def test_add_connection(self, store):
        """Test connecting Welcome to a Message."""
        a = _message(store)

        connection = store.add_connection(("start", "output"), (a.id, "input"))

        assert connection is not None
        assert store.get_connection(connection.id) == connection
        assert store.outgoing("start") == [connection]
        assert store.incoming(a.id) == [connection]

    def test_accepts_dicts_and_handle_refs(self, store):
        """Test the accepted endpoint forms."""
        a = _message(store)
        b = _message(store)

        assert store.add_connection(
            {"blockId": "start", "handleId": "output"},
            HandleRef(block_id=a.id, handle_id="input"),
        )
        assert store.add_connection({"blockId": a.id, "handleId": "output"}, (b.id, "input"))

    def test_self_loop_is_rejected(self, store):
        """Test that a block cannot connect to itself."""
        a = _message(store)

        assert store.add_connection((a.id, "output"), (a.id, "input")) is None
        assert store.connection_count == 0

    def test_duplicate_is_rejected(self, store):
        """Test that identical endpoints are only connected once."""
        a = _message(store)
        store.add_connection(("start", "output"), (a.id, "input"))
        length = len(store.history)

        assert store.add_connection(("start", "output"), (a.id, "input")) is None
        assert store.connection_count == 1
        assert len(store.history) == length

    def test_fan_out_is_allowed(self, store):
        """Test that one output can feed several targets."""
        a = _message(store)
        b = _message(store)

        store.add_connection(("start", "output"), (a.id, "input"))
        store.add_connection(("start", "output"), (b.id, "input"))

        assert len(store.outgoing("start", "output")) == 2

    def test_invalid_handles_are_rejected(self, store):
        """Test unknown blocks and handles the block doesn't have."""
        a = _message(store)
        goodbye = store.add_block(BlockType.GOODBYE, (0, 0))

        assert store.add_connection(("start", "output"), ("ghost", "input")) is None
        assert store.add_connection(("start", "option-x"), (a.id, "input")) is None
        assert store.add_connection((a.id, "output"), ("start", "input")) is None
        assert store.add_connection((goodbye.id, "output"), (a.id, "input")) is None
        assert store.connection_count == 0

    def test_buttons_option_handles(self, store):
        """Test that each option handle is a valid source."""
        buttons = store.add_block(BlockType.BUTTONS, (0, 0))
        a = _message(store)

        for handle in buttons.output_handles:
            assert store.add_connection((buttons.id, handle), (a.id, "input")) is not None

    def test_remove_connection(self, store):
        """Test removing a connection by id."""
        a = _message(store)
        connection = store.add_connection(("start", "output"), (a.id, "input"))

        store.remove_connection(connection.id)

        assert store.connection_count == 0
        with pytest.raises(ConnectionNotFoundError):
            store.get_connection(connection.id)

    def test_remove_unknown_connection_is_ignored(self, store):
        """Test removing a missing connection."""
        length = len(store.history)

        store.remove_connection("conn-missing")

        assert len(store.history) == length


class TestMoveAndDuplicate:
    """Tests for move_blocks and duplicate_blocks."""

    def test_move_blocks_commits_once(self, store):
        """Test that a group move is a single history entry."""
        a = _message(store, 0, 0)
        b = _message(store, 10, 10)
        length = len(store.history)

        store.move_blocks([a.id, b.id], (5, -5))

        assert store.get_block(a.id).position == Position(x=5, y=-5)
        assert store.get_block(b.id).position == Position(x=15, y=5)
        assert len(store.history) == length + 1

    def test_move_single_id_in_selection_moves_group(self, store):
        """Test that moving one selected block carries the rest of the selection."""
        a = _message(store, 0, 0)
        b = _message(store, 10, 10)
        c = _message(store, 20, 20)
        store.toggle_selection(a.id)
        store.toggle_selection(b.id)

        store.move_blocks(a.id, (1, 1))

        assert store.get_block(b.id).position == Position(x=11, y=11)
        assert store.get_block(c.id).position == Position(x=20, y=20)

    def test_zero_move_is_ignored(self, store):
        """Test that a zero delta produces no history entry."""
        length = len(store.history)

        store.move_blocks("start", (0, 0))

        assert len(store.history) == length

    def test_duplicate_offsets_and_remaps(self, store):
        """Test that internal connections are cloned onto the copies."""
        a = _message(store, 0, 0)
        b = _message(store, 100, 0)
        store.add_connection(("start", "output"), (a.id, "input"))
        store.add_connection((a.id, "output"), (b.id, "input"))

        new_ids = store.duplicate_blocks([a.id, b.id])

        assert len(new_ids) == 2
        copy_a, copy_b = (store.get_block(i) for i in new_ids)
        assert copy_a.position == Position(x=40, y=40)
        assert copy_b.position == Position(x=140, y=40)
        assert copy_a.data == a.data

        cloned = store.outgoing(copy_a.id)
        assert len(cloned) == 1
        assert cloned[0].target.block_id == copy_b.id
        # The crossing connection from Welcome is not cloned
        assert store.incoming(copy_a.id) == []
        assert store.connection_count == 3

    def test_welcome_is_not_duplicated(self, store):
        """Test that duplicating the Welcome block does nothing."""
        assert store.duplicate_blocks(["start"]) == []
        assert store.block_count == 1


class TestSelection:
    """Tests for selection, focus and confirmed multi-delete."""

    def test_toggle_selection(self, store):
        """Test selecting and deselecting a block."""
        a = _message(store)

        store.toggle_selection(a.id)
        assert store.is_selected(a.id)

        store.toggle_selection(a.id)
        assert store.selected_block_ids == ()

    def test_welcome_cannot_be_selected(self, store):
        """Test that the entry point is excluded from selection."""
        store.toggle_selection("start")

        assert store.selected_block_ids == ()

    def test_selection_does_not_touch_history(self, store):
        """Test that selection is UI state only."""
        a = _message(store)
        length = len(store.history)

        store.toggle_selection(a.id)
        store.clear_selection()

        assert len(store.history) == length

    def test_duplicate_selected_selects_copies(self, store):
        """Test that the copies become the new selection."""
        a = _message(store)
        store.toggle_selection(a.id)

        new_ids = store.duplicate_selected()

        assert store.selected_block_ids == tuple(new_ids)

    def test_remove_selected_requires_confirmation(self, store):
        """Test the request/confirm flow for deleting the selection."""
        a = _message(store)
        b = _message(store)
        store.add_connection((a.id, "output"), (b.id, "input"))
        store.toggle_selection(a.id)
        store.toggle_selection(b.id)
        length = len(store.history)

        store.request_remove_selected()
        assert store.is_confirming_remove
        assert store.block_count == 3

        store.confirm_remove_selected()

        assert not store.is_confirming_remove
        assert store.block_count == 1
        assert store.connection_count == 0
        assert store.selected_block_ids == ()
        assert len(store.history) == length + 1

    def test_cancel_remove_selected(self, store):
        """Test that cancelling keeps everything."""
        a = _message(store)
        store.toggle_selection(a.id)
        store.request_remove_selected()

        store.cancel_remove_selected()

        assert not store.is_confirming_remove
        assert store.block_exists(a.id)

    def test_set_active_block(self, store):
        """Test opening and closing the property editor."""
        store.set_active_block("start")
        assert store.active_block.id == "start"

        store.set_active_block("missing")
        assert store.active_block is None


class TestDragging:
    """Tests for interactive drags."""

    def test_drag_commits_on_end_only(self, store):
        """Test that intermediate drag steps are not recorded."""
        a = _message(store, 0, 0)
        length = len(store.history)

        store.start_drag(a.id)
        store.drag(a.id, (10, 0))
        store.drag(a.id, (10, 5))
        assert len(store.history) == length

        store.end_drag(a.id)

        assert store.get_block(a.id).position == Position(x=20, y=5)
        assert len(store.history) == length + 1

    def test_drag_back_to_origin_does_not_commit(self, store):
        """Test that a drag ending where it started leaves history alone."""
        a = _message(store, 0, 0)
        length = len(store.history)

        store.start_drag(a.id)
        store.drag(a.id, (10, 10))
        store.drag(a.id, (-10, -10))
        store.end_drag(a.id)

        assert len(store.history) == length

    def test_dragging_selected_block_moves_group(self, store):
        """Test that a multi-selection moves as a rigid group."""
        a = _message(store, 0, 0)
        b = _message(store, 50, 50)
        c = _message(store, 100, 100)
        store.toggle_selection(a.id)
        store.toggle_selection(b.id)

        store.start_drag(a.id)
        store.drag(a.id, (5, 5))
        store.end_drag(a.id)

        assert store.get_block(a.id).position == Position(x=5, y=5)
        assert store.get_block(b.id).position == Position(x=55, y=55)
        assert store.get_block(c.id).position == Position(x=100, y=100)

    def test_undo_drag_restores_positions(self, store):
        """Test that one undo reverts a whole drag."""
        a = _message(store, 0, 0)

        store.start_drag(a.id)
        store.drag(a.id, (30, 30))
        store.end_drag(a.id)
        store.undo()

        assert store.get_block(a.id).position == Position(x=0, y=0)


class TestBatch:
    """Tests for batch()."""

    def test_batch_commits_once(self, store):
        """Test that several mutations become one history entry."""
        length = len(store.history)

        with store.batch():
            a = _message(store)
            store.add_connection(("start", "output"), (a.id, "input"))

        assert len(store.history) == length + 1
        store.undo()
        assert store.block_count == 1
        assert store.connection_count == 0

    def test_empty_batch_does_not_commit(self, store):
        """Test that a batch without changes records nothing."""
        with store.batch():
            store.add_block(BlockType.WELCOME, (0, 0))

        assert len(store.history) == 1

    def test_failed_batch_rolls_back(self, store):
        """Test that an exception restores the pre-batch state."""
        before = store.snapshot

        with pytest.raises(RuntimeError):
            with store.batch():
                _message(store)
                raise RuntimeError("boom")

        assert store.snapshot == before
        assert len(store.history) == 1

    def test_failed_batch_restores_selection_and_focus(self, store):
        """Test that an aborted removal brings back selection and edit focus."""
        with store.batch():
            a = _message(store)
        store.toggle_selection(a.id)
        store.set_active_block(a.id)
        store.start_drag(a.id)

        with pytest.raises(RuntimeError):
            with store.batch():
                store.remove_block(a.id)
                raise RuntimeError("boom")

        assert store.block_exists(a.id)
        assert store.selected_block_ids == (a.id,)
        assert store.active_block_id == a.id

        store.drag(a.id, (5, 0))
        store.end_drag(a.id)
        assert len(store.history) == 3

    def test_nested_batches_commit_at_outermost(self, store):
        """Test that inner batches defer to the outer one."""
        with store.batch():
            _message(store)
            with store.batch():
                _message(store)
            assert len(store.history) == 1

        assert len(store.history) == 2


class TestUndoRedo:
    """Tests for undo/redo through the store."""

    def test_undo_redo_round_trip(self, store):
        """Test that undo then redo restores an equal graph."""
        a = _message(store)
        store.add_connection(("start", "output"), (a.id, "input"))
        after = store.snapshot

        assert store.undo()
        assert store.redo()
        assert store.snapshot == after

    def test_full_history_walk(self, store):
        """Test that N undos reach the seed graph and N redos the latest state."""
        a = _message(store)
        b = store.add_block(BlockType.BUTTONS, (500, 150))
        store.add_connection(("start", "output"), (a.id, "input"))
        store.add_connection((a.id, "output"), (b.id, "input"))
        store.update_block_data(a.id, {"message": "Hello again"})
        store.move_blocks(b.id, (10, 0))
        latest = store.snapshot
        steps = len(store.history) - 1

        for _ in range(steps):
            assert store.undo()
        assert store.snapshot == seed_snapshot()
        assert not store.undo()

        for _ in range(steps):
            assert store.redo()
        assert store.snapshot == latest
        assert not store.redo()

    def test_undo_at_baseline(self, store):
        """Test that undo on a fresh store reports nothing restored."""
        assert store.undo() is False
        assert store.redo() is False

    def test_new_edit_truncates_redo(self, store):
        """Test that editing after undo discards the redo branch."""
        _message(store)
        store.undo()

        _message(store)

        assert not store.can_redo
        assert len(store.history) == 2

    def test_undo_clears_ui_state(self, store):
        """Test that restoring a snapshot resets selection and focus."""
        a = _message(store)
        store.toggle_selection(a.id)
        store.set_active_block(a.id)

        store.undo()

        assert store.selected_block_ids == ()
        assert store.active_block_id is None

    def test_max_history(self):
        """Test that EditorConfig.max_history caps the history."""
        store = GraphStore(EditorConfig(max_history=2))
        _message(store)
        _message(store)

        assert len(store.history) == 2
        assert store.undo()
        assert not store.can_undo


class TestSubscribe:
    """Tests for change notifications."""

    def test_listener_receives_snapshots(self, store):
        """Test that listeners get the snapshot after each change."""
        seen = []
        unsubscribe = store.subscribe(seen.append)

        a = _message(store)
        store.undo()
        unsubscribe()
        store.redo()

        assert len(seen) == 2
        assert seen[0].get_block(a.id) is not None
        assert seen[1].get_block(a.id) is None

    def test_get_block_raises_for_unknown(self, store):
        """Test lookup errors."""
        with pytest.raises(BlockNotFoundError):
            store.get_block("missing")
