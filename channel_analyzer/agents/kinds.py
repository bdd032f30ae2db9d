"""
Agent kinds available to the pipeline.
Each kind pairs the shared transcript-handling rules with its own task
instructions and output contract.
"""

from typing import Dict, Type

from channel_analyzer.agents.orchestrator import AgentKind
from channel_analyzer.schemas.analysis import (
    AnalysisOutput,
    BuyLowOutput,
    DropOutput,
    InjuryReturnOutput,
    MustRosterOutput,
    SellHighOutput,
    WatchListOutput,
)

DEFAULT_MAX_STEPS = 3

SHARED_CONTEXT = """You analyze transcripts of fantasy basketball videos.

IMPORTANT TRANSCRIPTION NOTES:
- The transcript was generated automatically from speech with a regional accent
- Player names may be phonetically transcribed (e.g. "Andre Drummond" might appear as "Andrew Drummond")
- Team names may be unclear or incorrectly transcribed
- Do NOT guess which team a player is on unless it is explicitly stated
- If a name is unclear or garbled, report EXACTLY what the transcript says
- Only include a player if you are confident about the name from the transcript

GENERAL RULES:
- Be conservative and only include players with clear mentions
- Do not invent or assume information not explicitly in the transcript
- Focus on explicit recommendations from the analyst
- Cite reasoning directly from transcript quotes when possible
- Put team, position and roster_percentage (0-100) in attributes only when explicitly mentioned
- Return an empty findings list when nothing qualifies; that is a valid answer
"""

MUST_ROSTER_TASK = """YOUR SPECIFIC TASK: Identify players the analyst EXPLICITLY recommends as URGENT MUST-ROSTER adds.

Look for phrases like "must add immediately", "top waiver priority", "don't wait on this guy",
"pick him up ASAP", "claim him off waivers", "he's a must-add".

URGENCY LEVELS:
- HIGH: "must add NOW", "urgent pickup", "don't wait", "top priority"
- MEDIUM: "good add", "worth rostering", "solid pickup"
- LOW: "consider adding", "decent option"

EXCLUDE players mentioned in passing, players to "watch" but not add yet, historical context
and speculative future value without a current action.

It is better to return an empty list than to include uncertain recommendations."""

WATCH_LIST_TASK = """YOUR SPECIFIC TASK: Identify players the analyst recommends MONITORING or keeping on a WATCH LIST.

Look for phrases like "keep an eye on", "monitor closely", "trending up", "could break out",
"worth watching", "monitor his minutes", "if he gets opportunity...".

URGENCY LEVELS:
- HIGH: "watch closely", "trending up fast", "could be valuable very soon"
- MEDIUM: "keep an eye on", "interesting situation", "potential upside"
- LOW: "worth noting", "long-term potential"

EXCLUDE immediate adds, drop recommendations and generic statements about monitoring everyone.
Use context to say WHAT situation to monitor (injury, opportunity, schedule, role change) and
any time-sensitive factor.

These are NOT adds yet, only players with potential who need monitoring."""

DROP_TASK = """YOUR SPECIFIC TASK: Identify players the analyst EXPLICITLY recommends DROPPING from fantasy rosters.

Look for phrases like "safe to drop", "cut candidate", "not worth holding", "time to move on",
"cut him loose", "he's droppable", "free up the roster spot".

URGENCY LEVELS:
- HIGH: "drop immediately", "cut him now", "wasting a roster spot"
- MEDIUM: "safe to drop", "consider cutting", "probably droppable"
- LOW: "could drop in shallow leagues", "droppable in some formats"

EXCLUDE players who are only struggling, players to "hold and monitor", and buy-low candidates.
Note league format or conditions in context (e.g. "in 10-team leagues", "try to trade first").

Drops must be EXPLICIT recommendations, not just complaints about recent performance."""

INJURY_RETURN_TASK = """YOUR SPECIFIC TASK: Identify players RETURNING FROM INJURY, or expected back soon, with fantasy relevance.

Look for phrases like "back from IL", "cleared to play", "expected back next week",
"practicing again", "targeting [date] return", "back in the lineup".

URGENCY LEVELS:
- HIGH: already returned or returning within days, high fantasy value
- MEDIUM: returning within 1-2 weeks, good fantasy value
- LOW: longer timeline or uncertain value on return

Capture in context: return timeline and whether it is confirmed or estimated, injury type,
minutes restrictions, impact on teammates, and whether the analyst says to stash before return.

EXCLUDE brief mentions of past injuries, new injuries and non-injury load management.
Focus on returns with fantasy implications, not injury news in general."""

SELL_HIGH_TASK = """YOUR SPECIFIC TASK: Identify players the analyst recommends as SELL HIGH candidates:
players performing above a sustainable level who should be traded while their value peaks.

Look for explicit sell phrases ("sell high", "cash in on his value", "sell before regression")
and regression indicators ("unsustainable", "this won't hold", shooting percentages far above
career norms, usage too high to maintain, a teammate returning from injury).

URGENCY LEVELS:
- HIGH: "sell now", "peak value right now", teammates returning very soon
- MEDIUM: "good time to sell", "solid sell candidate", catalyst within 1-2 weeks
- LOW: "might be worth trading", vague regression timeline

For each player, reasoning should say WHY value is high and WHAT will cause regression, with
specific numbers when mentioned (e.g. "shooting 93% FT vs career 83%"). Put timing in context.

EXCLUDE players simply playing well without sell advice, buy-low candidates and long-term holds."""

BUY_LOW_TASK = """YOUR SPECIFIC TASK: Identify players the analyst recommends as BUY LOW candidates:
players whose value has temporarily dropped below their real ability.

Look for explicit buy phrases ("buy low", "buy the dip", "undervalued", "buying opportunity")
and positive regression indicators ("bounce back candidate", "shooting will normalize",
"role should expand when...", schedule about to ease, health improving).

URGENCY LEVELS:
- HIGH: "buy immediately", "window is closing", imminent catalyst
- MEDIUM: "good time to buy", "consider targeting", catalyst within 1-2 weeks
- LOW: "might be worth it", vague timeline for improvement

For each player, reasoning should say WHY value is low and WHAT will cause improvement, with
specific numbers when mentioned (e.g. "shooting 35% FG vs career 45%"). Put catalysts in context.

EXCLUDE players who are simply bad, drop candidates and sell-high candidates."""


def _kind(name: str, label: str, task: str, output_model: Type[AnalysisOutput]) -> AgentKind:
    return AgentKind(
        name=name,
        label=label,
        preamble=f"{SHARED_CONTEXT}\n{task}",
        output_model=output_model,
        max_steps=DEFAULT_MAX_STEPS,
    )


AGENT_KINDS: Dict[str, AgentKind] = {
    kind.name: kind
    for kind in (
        _kind("must_roster", "Must-Roster", MUST_ROSTER_TASK, MustRosterOutput),
        _kind("watch_list", "Watch List", WATCH_LIST_TASK, WatchListOutput),
        _kind("drop", "Drop", DROP_TASK, DropOutput),
        _kind("injury_return", "Injury Return", INJURY_RETURN_TASK, InjuryReturnOutput),
        _kind("sell_high", "Sell High", SELL_HIGH_TASK, SellHighOutput),
        _kind("buy_low", "Buy Low", BUY_LOW_TASK, BuyLowOutput),
    )
}


def get_agent_kind(name: str) -> AgentKind:
    """
    Look up an agent kind by name.

    Raises:
        KeyError: If no agent kind has that name
    """
    try:
        return AGENT_KINDS[name]
    except KeyError:
        raise KeyError(f"Unknown agent kind: {name}. Available: {', '.join(AGENT_KINDS)}") from None
