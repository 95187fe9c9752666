"""
Built-in agents registered at startup.

General assistants (from the quick-chat surface):
  weather, math, research  -- one tool each
  coordinator              -- no tools, hands off to the three specialists

Ritual composition agents (driven by the RitualWorkflow):
  composer-anthropology, composer-biology, composer-psychology,
  composer-economy, composer-ergonomics   -- the five perspectives
  synthesizer        -- merges perspective drafts into a RitualArtifact
  red-flag-checker   -- ethical screening, returns a RedFlagReport
  ritual-reviser     -- repairs a flagged ritual, returns a RitualArtifact

Every built-in can also be chatted with directly via /api/chat/{id}.
The instruction text is example content; the gateway never interprets it.
"""

from .descriptor import AgentDescriptor
from .registry import AgentRegistry
from .schemas import RedFlagReport, RitualArtifact

COORDINATOR_AGENT_ID = "coordinator"

# Fixed order: downstream stages always see perspectives in this order.
PERSPECTIVES = ("anthropology", "biology", "psychology", "economy", "ergonomics")
PERSPECTIVE_AGENT_IDS = tuple(f"composer-{p}" for p in PERSPECTIVES)
SYNTHESIZER_AGENT_ID = "synthesizer"
SCREENING_AGENT_ID = "red-flag-checker"
REVISION_AGENT_ID = "ritual-reviser"

_PERSPECTIVE_FOCUS = {
    "anthropology": (
        "cultural meaning, symbolism, and how comparable rituals function across "
        "human societies"
    ),
    "biology": (
        "the body: breath, movement, rest, circadian rhythm, and physiological "
        "effects of the activity"
    ),
    "psychology": (
        "attention, emotion, habit formation, and the felt sense of meaning and "
        "safety for participants"
    ),
    "economy": (
        "cost, materials, time budget, and accessibility for people with limited "
        "resources"
    ),
    "ergonomics": (
        "physical setup, posture, space, duration, and accommodations for "
        "different bodies and abilities"
    ),
}


def _perspective_agent(perspective: str) -> AgentDescriptor:
    title = perspective.capitalize()
    return AgentDescriptor(
        id=f"composer-{perspective}",
        name=f"{title} Composer",
        description=f"Drafts ritual elements from the {perspective} perspective",
        instructions=(
            f"You are a ritual composer working from the {perspective} perspective.\n"
            f"Focus on {_PERSPECTIVE_FOCUS[perspective]}.\n\n"
            f"Given the user's request, draft the elements of a personal ritual "
            f"that your perspective contributes: concrete steps, the reasoning "
            f"behind them, and anything to avoid. Stay within your perspective; "
            f"other composers cover the rest. Answer in plain prose."
        ),
    )


def builtin_agents() -> list[AgentDescriptor]:
    """Fresh descriptors for every built-in agent, in registration order."""
    weather = AgentDescriptor(
        id="weather",
        name="Weather Assistant",
        description="Current weather for a location",
        instructions=(
            "You are a weather specialist. Use the get_weather tool to provide "
            "current weather information for any location. Always be helpful and "
            "provide detailed weather information when requested."
        ),
        tools=("get_weather",),
    )
    math = AgentDescriptor(
        id="math",
        name="Math Assistant",
        description="Arithmetic, percentages, and expressions",
        instructions=(
            "You are a mathematics specialist. Use the calculate tool to perform "
            "mathematical calculations. You can handle basic arithmetic, "
            "percentages, and mathematical expressions. Always show your work "
            "when possible."
        ),
        tools=("calculate",),
    )
    research = AgentDescriptor(
        id="research",
        name="Research Assistant",
        description="Finds files and documents",
        instructions=(
            "You are a research specialist. Use the search_files tool to find "
            "relevant documents and information. Help users find the information "
            "they need from available files and documents."
        ),
        tools=("search_files",),
    )
    coordinator = AgentDescriptor(
        id=COORDINATOR_AGENT_ID,
        name="Coordinator",
        description="Routes requests to specialized agents",
        instructions=(
            "You are a coordinator that helps users by delegating to specialized "
            "agents when needed.\n"
            "- For weather-related questions, transfer to the Weather Assistant\n"
            "- For math calculations, transfer to the Math Assistant\n"
            "- For research and file searches, transfer to the Research Assistant\n"
            "- For general conversation, handle it yourself"
        ),
        handoffs=("weather", "math", "research"),
    )

    synthesizer = AgentDescriptor(
        id=SYNTHESIZER_AGENT_ID,
        name="Ritual Synthesizer",
        description="Merges perspective drafts into one ritual",
        instructions=(
            "You are a ritual synthesizer. You receive drafts from several "
            "perspective composers, in a fixed order. Weave them into ONE coherent "
            "ritual: a long-form narrative guiding the participant through it, a "
            "short activity name, a longer practical description, and the list of "
            "themes it draws on. Resolve conflicts between drafts in favour of "
            "safety and accessibility. Do not invent perspectives that were not "
            "provided."
        ),
        output_schema=RitualArtifact,
    )
    red_flag_checker = AgentDescriptor(
        id=SCREENING_AGENT_ID,
        name="Red Flag Checker",
        description="Ethical and safety screening of a ritual",
        instructions=(
            "You are an ethical reviewer. Screen the ritual you are given for "
            "physical danger, medical claims, cultural appropriation, exclusion, "
            "financial exploitation, or psychologically harmful framing. Set "
            "flagged to true only if the ritual should be revised, list each "
            "issue, and give one concrete suggestion per issue."
        ),
        output_schema=RedFlagReport,
    )
    reviser = AgentDescriptor(
        id=REVISION_AGENT_ID,
        name="Ritual Reviser",
        description="Repairs a flagged ritual",
        instructions=(
            "You revise rituals that failed ethical screening. Apply every "
            "suggestion, remove every flagged issue, and keep everything else "
            "about the ritual intact. Return the complete revised ritual."
        ),
        output_schema=RitualArtifact,
    )

    return [
        weather,
        math,
        research,
        coordinator,
        *(_perspective_agent(p) for p in PERSPECTIVES),
        synthesizer,
        red_flag_checker,
        reviser,
    ]


def register_builtin_agents(registry: AgentRegistry) -> int:
    """Register all built-ins. Returns the number registered."""
    agents = builtin_agents()
    for agent in agents:
        registry.register(agent)
    return len(agents)
