"""Stream-json wire protocol: framing, classification and tool-call reassembly."""

from agentpipe.protocol import wire
from agentpipe.protocol.classifier import Classified, Kind, ToolFragment, classify
from agentpipe.protocol.reassembly import ToolCallReassembler, parse_arguments
from agentpipe.protocol.stream_text import StreamTextDelta, extract_stream_text_delta

__all__ = [
    "Classified",
    "Kind",
    "StreamTextDelta",
    "ToolCallReassembler",
    "ToolFragment",
    "classify",
    "extract_stream_text_delta",
    "parse_arguments",
    "wire",
]
