from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from flowauto.flows.board_state import BoardSnapshot, CardSnapshot


@dataclass
class FlowContext:
    """Everything an action sees while a rule runs."""
    rule: Any
    card: CardSnapshot
    board: BoardSnapshot
    event: Any
    run_id: str
    site_url: str = ""
    previous_outputs: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def record_output(self, step_index: int, output: Optional[Dict[str, Any]]):
        if output:
            self.previous_outputs[f"step.{step_index}"] = dict(output)

    @property
    def card_url(self) -> str:
        return f"{self.site_url.rstrip('/')}/projects/{self.card.id}"
