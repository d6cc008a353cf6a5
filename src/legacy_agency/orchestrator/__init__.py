"""Task dispatcher for legacy-software automation.

A submitted task is driven pass by pass through classify, plan, execute
and verify. Each pass consumes one hop of the task's envelope; the
verifier's verdict decides whether the task completes, retries, is
handed to a human, or is dead-lettered once the hop budget runs out.
Repeated failures switch the envelope to ARCHITECT mode, where the
planner analyzes the failure and may swap in a revised plan.

Planner and executor are collaborators behind small protocols
(``planner.base.Planner``, ``backend.base.Executor``); the shipped
implementations call the Gemini REST API and spawn agent CLI sessions.
State lives in SQLite and is rewritten on every status transition so a
restarted scheduler can resume whatever was in flight.
"""
