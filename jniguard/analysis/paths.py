# jniguard — JNI Lifecycle Contract Analyzer
# Copyright (C) 2026 jniguard Project Contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""All-paths coverage over a control-flow graph.

Starting right after a trigger element, walk every path forward. The
caller's `classify` decides, element by element, whether the obligation the
trigger created is met (SATISFIED), broken (VIOLATED) or still open
(CONTINUE). Reaching the function exit with the obligation open yields
`exit_verdict`; running into the trigger again yields `retrigger_verdict`.
Each block is expanded at most once, so loops terminate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from jniguard.analysis.cfg import BasicBlock, CfgElement, ControlFlowGraph, Edge

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    CONTINUE = "continue"
    SATISFIED = "satisfied"
    VIOLATED = "violated"


@dataclass(frozen=True)
class PathCoverage:
    """Outcome of a coverage query.

    `witness` lists the source lines of one violating path, trigger first;
    `reason` says how that path ended ("hazard", "exit" or "retrigger").
    """

    satisfied: bool
    witness: tuple[int, ...] = ()
    reason: str = ""

    def __bool__(self) -> bool:
        return self.satisfied


Classifier = Callable[[CfgElement], Verdict]
EdgeFilter = Callable[[CfgElement, Edge], bool]


def required_on_all_paths(
    cfg: ControlFlowGraph,
    trigger: tuple[BasicBlock, int],
    classify: Classifier,
    *,
    exit_verdict: Verdict = Verdict.VIOLATED,
    retrigger_verdict: Verdict = Verdict.SATISFIED,
    prune_edge: Optional[EdgeFilter] = None,
) -> PathCoverage:
    """Check that every path from `trigger` settles the obligation.

    `prune_edge(element, edge)` may drop an outgoing edge of a block that
    ends in a condition element (the trigger's own condition included),
    e.g. the branch of `if (x == NULL)` where nothing needs releasing.
    """
    trigger_block, trigger_index = trigger
    trigger_line = trigger_block.elements[trigger_index].line

    expanded: set[int] = set()
    stack: list[tuple[BasicBlock, int, tuple[int, ...]]] = [
        (trigger_block, trigger_index + 1, (trigger_line,))
    ]

    while stack:
        block, start, lines = stack.pop()
        if start == 0:
            if block.id in expanded:
                continue
            expanded.add(block.id)

        settled = False
        for index in range(start, len(block.elements)):
            element = block.elements[index]
            if start == 0 and block is trigger_block and index == trigger_index:
                verdict = retrigger_verdict
                reason = "retrigger"
            else:
                verdict = classify(element)
                reason = "hazard"
            if verdict is Verdict.SATISFIED:
                settled = True
                break
            if verdict is Verdict.VIOLATED:
                return PathCoverage(False, lines + (element.line,), reason)
            lines = lines + (element.line,)
        if settled:
            continue

        last = block.elements[-1] if block.elements else None
        for edge in reversed(block.successors):
            if (
                prune_edge is not None
                and last is not None
                and last.role == "cond"
                and prune_edge(last, edge)
            ):
                continue
            if edge.target is cfg.exit:
                if exit_verdict is Verdict.VIOLATED:
                    return PathCoverage(False, lines, "exit")
                continue
            if edge.target.id not in expanded:
                stack.append((edge.target, 0, lines))

    return PathCoverage(True)
