"""Hypothesis strategies for property-based testing."""

from hypothesis import strategies as st

from ordinscribe.models.errors import TransportError
from ordinscribe.models.remote import StepResponse

outputs = st.text(
    alphabet=st.characters(min_codepoint=32, max_codepoint=126), min_size=0, max_size=40
)


@st.composite
def step_outcome(draw):
    """A scripted remote outcome: success, step failure or transport failure."""
    kind = draw(st.sampled_from(["ok", "error", "transport"]))
    output = draw(outputs)
    if kind == "ok":
        return StepResponse(output=output, error=False)
    if kind == "error":
        return StepResponse(output=output, error=True)
    return TransportError(output or "connection refused")


@st.composite
def pipeline_script(draw):
    """One outcome per step, keyed by remote call name."""
    return {
        "serve": draw(step_outcome()),
        "download": draw(step_outcome()),
        "inscribe": draw(step_outcome()),
    }


def batch_scripts(max_items: int = 5):
    return st.lists(pipeline_script(), min_size=0, max_size=max_items)
