"""SWIM agent mesh orchestration core.

Answers natural-language questions over independently-owned aviation data
sources and reacts to live event-stream signals by running multi-step
analysis plans across specialized data-access agents.

Packages:
- orchestrator: agent registry, capability routing, step invocation, plan
  coordination and response composition
- adherence: deterministic flight-plan vs. actual-track correlation
- events: trigger rules, event sources and report publishers
- agents: hosting base for capability agents behind the A2A protocol
- a2a: JSON-RPC 2.0 agent-to-agent transport
- utils: configuration, structured logging, LLM factory and circuit breakers
"""

__version__ = "0.1.0"
