from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class GateDeliverable:
    name: str
    owner: str
    path: str | None = None


@dataclass(slots=True, frozen=True)
class GateDefinition:
    id: str
    name: str
    roles: tuple[str, ...]
    description: str
    passing_criteria: str
    deliverables: tuple[GateDeliverable, ...] = field(default_factory=tuple)
    priorities: tuple[str, ...] = field(default_factory=tuple)


class UnknownGateError(LookupError):
    """Raised when a gate id is not part of the pipeline."""


GATES: tuple[GateDefinition, ...] = (
    GateDefinition(
        id="G1",
        name="intake",
        roles=("product_manager_onboarding",),
        description="Project scope approval: intake questionnaire complete",
        passing_criteria="User has approved project scope, vision, goals and constraints",
        deliverables=(
            GateDeliverable("Project Intake", "product_manager_onboarding", "docs/INTAKE.md"),
        ),
    ),
    GateDefinition(
        id="G2",
        name="requirements",
        roles=("product_manager",),
        description="PRD creation in progress",
        passing_criteria="Product Manager has created a complete PRD with user stories",
        deliverables=(
            GateDeliverable("Product Requirements Document", "product_manager", "docs/PRD.md"),
            GateDeliverable("User Stories", "product_manager", "docs/USER_STORIES.md"),
        ),
        priorities=("REQUIREMENTS",),
    ),
    GateDefinition(
        id="G3",
        name="architecture",
        roles=("architect",),
        description="Architecture and specifications in progress",
        passing_criteria="Architect has created OpenAPI spec, Prisma schema and Zod schemas",
        deliverables=(
            GateDeliverable("OpenAPI Specification", "architect", "specs/openapi.yaml"),
            GateDeliverable("Prisma Schema", "architect", "prisma/schema.prisma"),
            GateDeliverable("Zod Schemas", "architect", "specs/schemas/"),
            GateDeliverable("Architecture Document", "architect", "docs/ARCHITECTURE.md"),
            GateDeliverable("Tech Stack Document", "architect", "docs/TECH_STACK.md"),
        ),
        priorities=("REQUIREMENTS",),
    ),
    GateDefinition(
        id="G4",
        name="design",
        roles=("ux_ui_designer",),
        description="Design in progress",
        passing_criteria="UX/UI Designer has created 3 design options and one was selected",
        deliverables=(
            GateDeliverable("Design System", "ux_ui_designer", "design/system/"),
            GateDeliverable("UI Mockups", "ux_ui_designer", "design/mockups/"),
            GateDeliverable("Component Library", "ux_ui_designer", "design/components/"),
        ),
        priorities=("ARCHITECTURE", "REQUIREMENTS"),
    ),
    GateDefinition(
        id="G5",
        name="development",
        roles=("frontend_developer", "backend_developer"),
        description="Development in progress",
        passing_criteria="Developers have implemented features and all builds pass",
        deliverables=(
            GateDeliverable("Frontend Implementation", "frontend_developer", "frontend/src/"),
            GateDeliverable("Backend Implementation", "backend_developer", "backend/src/"),
            GateDeliverable("API Implementation", "backend_developer", "backend/src/api/"),
        ),
        priorities=("REQUIREMENTS", "ARCHITECTURE", "API_SPEC", "DATABASE_SCHEMA", "DESIGN"),
    ),
    GateDefinition(
        id="G6",
        name="testing",
        roles=("qa_engineer",),
        description="Testing in progress",
        passing_criteria="QA Engineer has created and executed the test plan with >80% coverage",
        deliverables=(
            GateDeliverable("Test Plan", "qa_engineer", "tests/TEST_PLAN.md"),
            GateDeliverable("Test Results", "qa_engineer", "tests/results/"),
            GateDeliverable("Coverage Report", "qa_engineer", "tests/coverage/"),
        ),
        priorities=("CODE", "API_SPEC", "REQUIREMENTS"),
    ),
    GateDefinition(
        id="G7",
        name="security",
        roles=("security_engineer",),
        description="Security audit in progress",
        passing_criteria="Security Engineer has completed the OWASP audit with no critical issues",
        deliverables=(
            GateDeliverable("Security Audit Report", "security_engineer", "docs/SECURITY_AUDIT.md"),
            GateDeliverable("Vulnerability Scan", "security_engineer", "security/scan-results/"),
        ),
        priorities=("CODE", "ARCHITECTURE"),
    ),
    GateDefinition(
        id="G8",
        name="staging",
        roles=("devops_engineer",),
        description="Staging deployment in progress",
        passing_criteria="DevOps has deployed to staging and smoke tests pass",
        deliverables=(
            GateDeliverable("Staging Deployment", "devops_engineer", "deploy/staging/"),
            GateDeliverable("CI/CD Pipeline", "devops_engineer", ".github/workflows/"),
            GateDeliverable("Infrastructure Config", "devops_engineer", "infrastructure/"),
        ),
        priorities=("DEPLOYMENT_GUIDE", "ARCHITECTURE"),
    ),
    GateDefinition(
        id="G9",
        name="production",
        roles=("devops_engineer",),
        description="Production deployment in progress",
        passing_criteria="DevOps has deployed to production and health checks pass",
        deliverables=(
            GateDeliverable("Production Deployment", "devops_engineer", "deploy/production/"),
            GateDeliverable("Monitoring Setup", "devops_engineer", "monitoring/"),
            GateDeliverable("Runbook", "devops_engineer", "docs/RUNBOOK.md"),
        ),
        priorities=("DEPLOYMENT_GUIDE", "TEST_RESULTS"),
    ),
)

GATE_IDS: tuple[str, ...] = tuple(gate.id for gate in GATES)
_GATES_BY_ID: dict[str, GateDefinition] = {gate.id: gate for gate in GATES}

TASK_DESCRIPTIONS: dict[tuple[str, str], str] = {
    ("product_manager_onboarding", "G1"): (
        "Conduct project intake interview and gather requirements"
    ),
    ("product_manager", "G2"): (
        "Create comprehensive Product Requirements Document with user stories"
    ),
    ("architect", "G3"): (
        "Design system architecture and generate OpenAPI, Prisma, and Zod specs"
    ),
    ("ux_ui_designer", "G4"): (
        "Create 3 viewable HTML design options (conservative, modern, bold). Save each one "
        "with the save_design_concept tool as a complete, responsive HTML page that follows "
        "WCAG 2.1 AA. After the three designs are saved, output a Design System document."
    ),
    ("frontend_developer", "G5"): "Implement frontend from specs and design system",
    ("backend_developer", "G5"): "Implement backend API from OpenAPI and Prisma specs",
    ("qa_engineer", "G6"): "Create test plan and execute tests with >80% coverage",
    ("security_engineer", "G7"): "Perform OWASP security audit and vulnerability scan",
    ("devops_engineer", "G8"): "Deploy to staging environment with CI/CD pipeline",
    ("devops_engineer", "G9"): "Deploy to production with monitoring and alerting",
}


def normalize_gate_id(gate_id: str) -> str:
    """Accept ``g5``, ``G5`` and ``G5_PENDING`` style ids."""
    return gate_id.strip().upper().split("_", 1)[0]


def get_gate(gate_id: str) -> GateDefinition:
    try:
        return _GATES_BY_ID[normalize_gate_id(gate_id)]
    except KeyError as exc:
        raise UnknownGateError(f"Unknown gate: {gate_id}") from exc


def is_known_gate(gate_id: str) -> bool:
    return normalize_gate_id(gate_id) in _GATES_BY_ID


def next_gate(gate_id: str) -> GateDefinition | None:
    index = GATE_IDS.index(get_gate(gate_id).id)
    if index + 1 >= len(GATES):
        return None
    return GATES[index + 1]


def roles_for_gate(gate_id: str) -> tuple[str, ...]:
    return get_gate(gate_id).roles


def priorities_for_gate(gate_id: str) -> tuple[str, ...]:
    if not is_known_gate(gate_id):
        return ()
    return get_gate(gate_id).priorities


def deliverables_for(gate_id: str, role: str) -> list[GateDeliverable]:
    return [item for item in get_gate(gate_id).deliverables if item.owner == role]


def task_description(role: str, gate_id: str) -> str:
    gate = normalize_gate_id(gate_id)
    return TASK_DESCRIPTIONS.get((role, gate), f"Complete {role} tasks for {gate}")


def next_roles(role: str) -> tuple[str, ...]:
    """Roles that receive this role's handoff: the next gate staffed by someone else."""
    start = next((i for i, gate in enumerate(GATES) if role in gate.roles), None)
    if start is None:
        return ()
    for gate in GATES[start + 1 :]:
        others = tuple(candidate for candidate in gate.roles if candidate != role)
        if others:
            return others
    return ()
