"""Tests for domain models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from deskrelay.domain.models import (
    CanonicalCommand,
    CommandKind,
    CoordinateSpace,
    LoopState,
    MouseButton,
    Point,
    PresenceRecord,
    Role,
    ScreenshotResponse,
    Session,
    SessionStatus,
    UnrecognizedCommand,
)


class TestSession:
    def test_defaults(self) -> None:
        session = Session(machine_id="m1", pairing_code="482913")
        assert session.status == SessionStatus.WAITING
        assert session.owner_id is None
        assert not session.is_claimed

    @pytest.mark.parametrize("code", ["12345", "1234567", "abcdef", ""])
    def test_pairing_code_must_be_six_digits(self, code: str) -> None:
        with pytest.raises(ValidationError):
            Session(machine_id="m1", pairing_code=code)

    def test_frozen(self) -> None:
        session = Session(machine_id="m1", pairing_code="482913")
        with pytest.raises(ValidationError):
            session.owner_id = "user-1"  # type: ignore[misc]


class TestPresenceRecord:
    def test_wire_uses_camel_case(self) -> None:
        record = PresenceRecord(role=Role.AGENT, owner_id="user-1")
        wire = record.to_wire()
        assert wire["role"] == "agent"
        assert wire["ownerId"] == "user-1"
        assert "joinedAt" in wire

    def test_parses_wire_form(self) -> None:
        record = PresenceRecord.model_validate(
            {"role": "controller", "ownerId": "u", "joinedAt": "2025-01-01T00:00:00Z"}
        )
        assert record.role == Role.CONTROLLER
        assert record.owner_id == "u"


class TestCanonicalCommand:
    def test_from_wire_click(self) -> None:
        command = CanonicalCommand.from_wire({"type": "click", "button": "left"})
        assert command.type == CommandKind.CLICK
        assert command.button == MouseButton.LEFT
        assert not command.has_coordinates
        assert command.coordinate_space is None

    @pytest.mark.parametrize("alias", ["mousemove", "params", "mouse_move"])
    def test_legacy_move_aliases(self, alias: str) -> None:
        command = CanonicalCommand.from_wire({"type": alias, "x": 10, "y": 20})
        assert command.type == CommandKind.MOVE

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(UnrecognizedCommand):
            CanonicalCommand.from_wire({"type": "teleport"})

    def test_missing_type_rejected(self) -> None:
        with pytest.raises(UnrecognizedCommand):
            CanonicalCommand.from_wire({"x": 1})

    def test_non_object_rejected(self) -> None:
        with pytest.raises(UnrecognizedCommand):
            CanonicalCommand.from_wire(["click"])  # type: ignore[arg-type]

    def test_malformed_field_rejected(self) -> None:
        with pytest.raises(UnrecognizedCommand):
            CanonicalCommand.from_wire({"type": "click", "button": "thumb"})

    def test_key_string_is_split(self) -> None:
        command = CanonicalCommand.from_wire({"type": "key_combination", "keys": "ctrl+a"})
        assert command.keys == ("ctrl", "a")

    def test_coordinates_default_to_model_space(self) -> None:
        command = CanonicalCommand(type=CommandKind.CLICK, x=500, y=500)
        assert command.coordinate_space == CoordinateSpace.MODEL

    def test_drag_has_coordinates(self) -> None:
        command = CanonicalCommand(
            type=CommandKind.DRAG, source=Point(x=1, y=2), destination=Point(x=3, y=4)
        )
        assert command.has_coordinates

    def test_to_wire_uses_aliases_and_drops_none(self) -> None:
        command = CanonicalCommand(type=CommandKind.CAPTURE_SCREENSHOT, request_id="r1")
        assert command.to_wire() == {"type": "capture_screenshot", "requestId": "r1"}


class TestScreenshotResponse:
    def test_wire_type_tag(self) -> None:
        response = ScreenshotResponse(image="abc", request_id="r1")
        wire = response.to_wire()
        assert wire["type"] == "screenshot_response"
        assert wire["requestId"] == "r1"


class TestLoopState:
    def test_over_limit(self) -> None:
        state = LoopState(max_iterations=2)
        assert not state.is_over_limit
        state.iteration = 2
        assert state.is_over_limit
