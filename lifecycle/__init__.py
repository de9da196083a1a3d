"""
Ticket lifecycle analytics service.

Rebuilds per-ticket status segments from webhook events, aggregates them into
daily and weekly business-hours statistics, and reconciles per-assignee closure
counts against the ticketing provider's snapshot API.
"""

__version__ = "0.1.0"
