from langgraph.graph import StateGraph, END
from app.models.state import AgentState
from app.workflow.nodes import open_entry, decide, act

def create_workflow() -> StateGraph:
    """Create and return the browser agent graph."""
    workflow = StateGraph(AgentState)

    # Add nodes
    workflow.add_node("open_entry", open_entry)
    workflow.add_node("decide", decide)
    workflow.add_node("act", act)

    # Set entry point and basic flow
    workflow.set_entry_point("open_entry")
    workflow.add_edge("open_entry", "decide")

    # A set outcome is terminal: completed, blocked or max_turns_reached
    workflow.add_conditional_edges(
        "decide",
        lambda state: END if state.get("outcome") else "act",
        {
            "act": "act",
            END: END
        }
    )

    workflow.add_conditional_edges(
        "act",
        lambda state: END if state.get("outcome") else "decide",
        {
            "decide": "decide",
            END: END
        }
    )

    return workflow.compile()

def recursion_limit(max_steps: int) -> int:
    """Graph supersteps needed for a run of max_steps actions plus the final decision."""
    return 2 * max_steps + 10

# Create the compiled workflow
workflow = create_workflow()
