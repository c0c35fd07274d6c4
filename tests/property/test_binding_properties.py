from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from sessionmux.terminal import BindingTable, DataFrame, ViewGeometry

_PAYLOAD_CHARS = st.characters(min_codepoint=32, max_codepoint=126)


class _View:
    def __init__(self, sink: list[str]) -> None:
        self._sink = sink

    def write(self, data: str) -> None:
        self._sink.append(data)

    def measure(self) -> ViewGeometry | None:
        return None


_STEPS = st.lists(
    st.one_of(
        st.tuples(st.just("frame"), st.sampled_from(["s1", "s2"]), st.text(alphabet=_PAYLOAD_CHARS, max_size=6)),
        st.tuples(st.just("attach"), st.sampled_from(["s1", "s2"]), st.just("")),
        st.tuples(st.just("detach"), st.sampled_from(["s1", "s2"]), st.just("")),
    ),
    max_size=60,
)


@given(_STEPS)
def test_every_session_sees_its_frames_once_and_in_order(steps: list[tuple[str, str, str]]) -> None:
    table = BindingTable(is_live=lambda _session_id: True)
    received: dict[str, list[str]] = {"s1": [], "s2": []}
    sent: dict[str, list[str]] = {"s1": [], "s2": []}

    for action, session_id, payload in steps:
        binding = table.get(session_id)
        attached = binding is not None and binding.view is not None
        if action == "frame":
            sent[session_id].append(payload)
            table.route(DataFrame(session_id=session_id, payload=payload))
        elif action == "attach" and not attached:
            table.attach_view(session_id, _View(received[session_id]))
        elif action == "detach" and binding is not None:
            table.detach_view(session_id)

    for session_id in ("s1", "s2"):
        if _attached(table, session_id):
            table.detach_view(session_id)
        if table.get(session_id) is not None:
            table.attach_view(session_id, _View(received[session_id]))
        assert "".join(received[session_id]) == "".join(sent[session_id])


@given(st.lists(st.text(alphabet=_PAYLOAD_CHARS, min_size=1, max_size=8), max_size=30))
def test_pending_size_tracks_buffered_text(payloads: list[str]) -> None:
    table = BindingTable()
    for payload in payloads:
        table.route(DataFrame(session_id="s1", payload=payload))

    binding = table.get("s1")
    if not payloads:
        assert binding is None
        return
    assert binding.pending_chars == sum(len(payload) for payload in payloads)
    assert binding.pending_text() == "".join(payloads)


def _attached(table: BindingTable, session_id: str) -> bool:
    binding = table.get(session_id)
    return binding is not None and binding.view is not None
