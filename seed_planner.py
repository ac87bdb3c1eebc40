#!/usr/bin/env python3
"""
Load demo data into a planner DB.

Dates are relative to `now`, so a freshly seeded DB always shows one task
due today, one overdue, one due tomorrow and a blocked one later in the week.

Usage:
    python seed_planner.py --db /tmp/planner_demo.db
    python seed_planner.py --db /tmp/planner_demo.db --reset
"""
import argparse
import logging
import os
import sys
from datetime import datetime, timedelta
from typing import Dict, Any

from pkg.planner.config import Config
from pkg.planner.store import PlannerStore
from pkg.planner.temporal import local_now

logger = logging.getLogger("planner.seed")


def seed(store: PlannerStore, now: datetime) -> Dict[str, Any]:
    """Insert the demo records. Returns the created records keyed by handle."""

    def days(n: int) -> datetime:
        return now + timedelta(days=n)

    created: Dict[str, Any] = {}

    # ━━ Clients ━━
    created["acme"] = store.create("clients", {
        "name": "Acme Corporation",
        "industry": "Manufacturing",
        "is_key_account": True,
        "tags": ["Signed", "Enterprise"],
        "contacts": [{"name": "John Smith", "email": "john@acme.com", "phone": "+1-555-0100"}],
        "links": ["https://acme.com", "https://portal.acme.com"],
        "next_step": "Review Q1 implementation roadmap",
        "next_step_due": days(3),
    })
    created["techstart"] = store.create("clients", {
        "name": "TechStart Inc",
        "industry": "Software",
        "tags": ["Pre-sales", "SMB"],
        "contacts": [{"name": "Sarah Johnson", "email": "sarah@techstart.io", "phone": "+1-555-0200"}],
        "links": ["https://techstart.io"],
        "next_step": "Send proposal draft",
        "next_step_due": days(1),
    })
    created["global"] = store.create("clients", {
        "name": "Global Logistics Ltd",
        "industry": "Logistics",
        "tags": ["Sales pursuit", "Enterprise"],
        "next_step": "Schedule discovery call",
        "next_step_due": days(2),
    })
    acme, techstart, global_logistics = created["acme"], created["techstart"], created["global"]

    # ━━ Opportunities ━━
    created["opp_cloud"] = store.create("opportunities", {
        "client_id": techstart.id,
        "name": "TechStart Cloud Migration",
        "stage": "Proposal",
        "amount": 125000,
        "probability": 0.7,
        "next_step": "Address security concerns in proposal",
        "next_step_due": days(2),
        "notes": "Decision maker: CTO. Budget approved for Q2.",
    })
    created["opp_supply"] = store.create("opportunities", {
        "client_id": global_logistics.id,
        "name": "Supply Chain Optimization Platform",
        "stage": "Discovery",
        "amount": 450000,
        "probability": 0.3,
        "next_step": "Technical deep dive session",
        "next_step_due": days(7),
        "notes": "Competing with incumbent vendor",
    })

    # ━━ Projects ━━
    created["erp"] = store.create("projects", {
        "client_id": acme.id,
        "kind": "Active",
        "type": "Implementation",
        "status": "In Progress",
        "title": "Acme ERP Integration",
        "description": "Integrate custom ERP with Dynamics 365 Finance & Operations",
        "tags": ["Phase 1", "Critical"],
        "next_step": "Complete data mapping document",
        "next_step_due": days(2),
    })
    created["demo"] = store.create("projects", {
        "kind": "Active",
        "type": "Personal R&D",
        "status": "In Progress",
        "title": "AI Assistant Demo",
        "description": "Build demonstration of AI-powered order processing",
        "tags": ["Demo", "Innovation"],
        "next_step": "Record demo video",
        "next_step_due": days(5),
    })
    created["phase2"] = store.create("projects", {
        "client_id": acme.id,
        "kind": "Planned",
        "type": "Implementation",
        "status": "Not Started",
        "title": "Acme Phase 2 - Warehouse Management",
        "description": "Extend integration to warehouse management system",
        "tags": ["Phase 2"],
    })
    erp, demo = created["erp"], created["demo"]

    # ━━ Tasks ━━
    tasks = [
        ("mapping", {
            "project_id": erp.id, "client_id": acme.id,
            "title": "Review customer data mapping",
            "description": "Validate field mappings for customer entity with business team",
            "status": "Doing", "due": now,
            "priority": 5, "effort": 2, "impact": 4, "confidence": 0.9,
            "is_next_step": True, "tags": ["urgent", "data"],
        }),
        ("pricing", {
            "project_id": erp.id, "client_id": acme.id,
            "title": "Fix pricing sync issue",
            "description": "Prices not updating correctly from ERP",
            "status": "Todo", "due": days(-1),
            "priority": 5, "effort": 3, "impact": 5, "confidence": 0.8,
            "tags": ["bug", "critical"],
        }),
        ("orders", {
            "project_id": demo.id,
            "title": "Implement order creation flow",
            "description": "Add AI suggestions for product recommendations",
            "status": "Todo", "due": days(3),
            "priority": 3, "effort": 4, "impact": 4, "confidence": 0.7,
            "tags": ["demo", "ai"],
        }),
        ("proposal", {
            "client_id": techstart.id,
            "title": "Prepare TechStart proposal",
            "description": "Include architecture diagram and timeline",
            "status": "Todo", "due": days(1),
            "priority": 4, "effort": 3, "impact": 5, "confidence": 0.85,
            "is_next_step": True, "tags": ["presales"],
        }),
        ("research", {
            "title": "Research new D365 features",
            "status": "Inbox",
            "priority": 2, "effort": 2, "impact": 3, "confidence": 0.6,
            "tags": ["learning"],
        }),
        ("linkedin", {
            "title": "Update LinkedIn profile",
            "description": "Add recent project successes",
            "status": "Inbox",
            "priority": 1, "effort": 1, "impact": 2, "confidence": 1,
            "tags": ["personal"],
        }),
        ("gateway", {
            "project_id": erp.id, "client_id": acme.id,
            "title": "Configure payment gateway",
            "description": "Waiting for API credentials from client",
            "status": "Blocked", "due": days(7),
            "priority": 3, "effort": 2, "impact": 4, "confidence": 0.9,
            "tags": ["integration", "blocked"],
        }),
    ]
    for handle, data in tasks:
        created[handle] = store.create_task(data)

    # ━━ Stakeholders ━━
    for handle, data in (
        ("john", {"client_id": acme.id, "name": "John Smith", "role": "IT Director",
                  "email": "john.smith@acme.com", "influence": 4, "attitude": "Supporter",
                  "notes": "Technical decision maker, prefers detailed documentation"}),
        ("mary", {"client_id": acme.id, "name": "Mary Johnson", "role": "CFO",
                  "email": "mary.johnson@acme.com", "influence": 5, "attitude": "Neutral",
                  "notes": "Budget holder, focused on ROI"}),
        ("sarah", {"client_id": techstart.id, "name": "Sarah Davis", "role": "CTO",
                   "email": "sarah@techstart.io", "influence": 5, "attitude": "Champion",
                   "notes": "Hands-on technical leader, likes demos"}),
    ):
        created[handle] = store.create("stakeholders", data)

    # ━━ RAID ━━
    created["risk_migration"] = store.create("raid", {
        "kind": "Risk", "project_id": erp.id, "client_id": acme.id,
        "title": "Data migration complexity",
        "severity": "High", "likelihood": "Medium",
        "mitigation": "Incremental migration approach with validation checkpoints",
        "owner": "Tech Lead", "due": days(7), "status": "Open",
    })
    created["risk_availability"] = store.create("raid", {
        "kind": "Risk", "project_id": erp.id, "client_id": acme.id,
        "title": "Key stakeholder availability",
        "severity": "Medium", "likelihood": "High",
        "mitigation": "Document all decisions, async communication when needed",
        "owner": "PM", "status": "Mitigating",
    })
    created["decision_cloud"] = store.create("raid", {
        "kind": "Decision", "project_id": erp.id, "client_id": acme.id,
        "title": "Use Azure Integration Services for middleware",
        "status": "Closed", "decided_on": days(-10),
    })

    # ━━ Notes, time, knowledge ━━
    created["kickoff_note"] = store.create("notes", {
        "title": "ERP kickoff notes",
        "content": "Agreed phased rollout. Customer master data first.",
        "client_id": acme.id, "project_id": erp.id,
        "linked_tasks": [created["mapping"].id, created["pricing"].id],
        "tags": ["meeting"],
    })
    today = now.date()
    for offset, hours, billable, project, label in (
        (0, 2.5, True, erp, "Data mapping workshop"),
        (-1, 4.0, True, erp, "Pricing sync investigation"),
        (-2, 1.5, False, demo, "Demo prototyping"),
    ):
        store.create("time", {
            "date": today + timedelta(days=offset),
            "hours": hours,
            "billable": billable,
            "client_id": project.client_id,
            "project_id": project.id,
            "notes": label,
        })
    created["kb_docs"] = store.create("knowledge", {
        "title": "Dynamics 365 data entities",
        "url": "https://learn.microsoft.com/dynamics365/fin-ops-core/dev-itpro/data-entities/data-entities",
        "source_type": "docs",
        "tags": ["d365", "data"],
    })
    return created


def reset(store: PlannerStore) -> None:
    """Remove every record (settings are kept)."""
    for name in ("time", "knowledge", "raid", "stakeholders", "notes", "tasks",
                 "opportunities", "projects", "clients"):
        for record in store.list(name):
            store.delete(name, record.id)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Seed the planner DB with demo data")
    parser.add_argument("--db", help="Path to planner.db (overrides PLANNER_DB env var)")
    parser.add_argument("--reset", action="store_true", help="Delete existing records first")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [planner] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    if args.db:
        os.environ["PLANNER_DB"] = args.db
    cfg = Config.load()
    store = PlannerStore(cfg.db_path)
    if args.reset:
        reset(store)
        logger.info("Cleared existing records")

    created = seed(store, local_now(cfg.timezone))
    stats = store.stats()
    logger.info(f"Seeded {len(created)} records into {store.db_path}")
    for name, count in stats["collections"].items():
        logger.info(f"  {name:<14} {count}")


if __name__ == "__main__":
    main()
