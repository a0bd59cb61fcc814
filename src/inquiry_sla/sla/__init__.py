"""
SLA Monitoring Module
=====================

Bounded Context for Service Level Agreement monitoring and escalation.

Responsibilities:
- Calculate business-calendar aware response, resolution and escalation deadlines
- Sweep open inquiries and record each breached deadline exactly once
- Classify violation severity by delay
- Resolve escalation targets through the admin fallback chain
- Escalate atomically: reassignment, priority bump, audit record
- Report compliance and escalation statistics
"""
