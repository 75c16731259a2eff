"""Markdown rendering of a specification document.

The document skeleton is fixed; group specific wording comes from the
template tables below with ``general`` as the fallback. The Task Breakdown
section is the only part other code depends on: task IDs are
``{CODE}-{seq:03d}`` with a single sequence shared by every layer of the
document, which keeps IDs unique within it.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from .models import ImplementationPlanSpec, RequirementProfile

DEFAULT_TASK_ESTIMATE = "2-3hr"

LAYER_TASK_TEMPLATES: Dict[str, Tuple[str, ...]] = {
    "Database Layer": ("Create database schema", "Implement migrations", "Add indexes and constraints"),
    "Backend Layer": ("Implement service logic", "Create API endpoints", "Add validation"),
    "Frontend Layer": ("Create UI components", "Implement state management", "Add user interactions"),
    "Component Layer": ("Design component structure", "Implement base components", "Add component logic"),
    "API Layer": ("Define API contracts", "Implement endpoints", "Add documentation"),
    "Integration Layer": ("Set up external connections", "Implement data transformation", "Add error handling"),
    "Testing Layer": ("Write unit tests", "Create integration tests", "Add performance tests"),
    "Security Layer": ("Implement authentication", "Add authorization", "Security validation"),
    "MCP Layer": ("Configure MCP tools", "Implement MCP handlers", "Add MCP integration"),
    "Migration Layer": ("Write forward migrations", "Write rollback migrations", "Verify migrated data"),
    "Service Layer": ("Implement data services", "Add service validation", "Expose service interfaces"),
}
FALLBACK_LAYER_TASKS = ("Implement core functionality", "Add validation", "Create tests")

IMPACTS = {
    "auth": "Enhance security and user management capabilities",
    "ui": "Improve user experience and interface functionality",
    "api": "Expand backend service capabilities and data access",
    "data": "Strengthen data management and storage capabilities",
    "integration": "Enable new external system connections and workflows",
    "general": "Enhance overall system functionality",
}

RISKS = {
    "auth": "Security implementation requires careful validation",
    "ui": "User interface changes may affect existing workflows",
    "api": "API changes may impact dependent services",
    "data": "Database changes require migration planning",
    "integration": "External dependencies may introduce instability",
    "general": "Standard implementation with known patterns",
}

DEPENDENCIES = {
    "auth": "User management system, security infrastructure",
    "ui": "Design system, component library, state management",
    "api": "Database layer, service architecture, documentation",
    "data": "Database infrastructure, migration system, backup strategy",
    "integration": "External API access, MCP infrastructure, error handling",
    "general": "Core system architecture and development environment",
}

# (primary, secondary)
TARGET_USERS = {
    "auth": ("End users requiring secure access, daily usage",
             "System administrators managing user access"),
    "ui": ("End users interacting with the interface, frequent usage",
           "System administrators monitoring user interactions"),
    "api": ("Developers and applications consuming the API, programmatic usage",
            "System administrators monitoring API performance"),
    "data": ("System administrators and data consumers, operational usage",
             "Developers requiring data access for features"),
    "integration": ("External system operators and integration specialists, automated usage",
                    "Developers maintaining integration connections"),
    "general": ("System users and administrators, regular usage",
                "Technical support team and system monitors"),
}

# (performance, usability, scale)
CORE_GOALS = {
    "auth": ("Authentication <500ms, authorization <100ms",
             "Secure and intuitive login flow, password recovery",
             "Handle 10K+ concurrent users, role-based permissions"),
    "ui": ("Page load <2s, interactions <200ms",
           "Intuitive interface, accessibility compliance, mobile responsive",
           "Support diverse devices, handle 100+ concurrent UI operations"),
    "api": ("Response time <300ms, throughput 1000 req/s",
            "Clear documentation, consistent responses, developer-friendly",
            "Scale to 100K+ requests/hour, support API versioning"),
    "data": ("Query time <100ms, data consistency 99.9%",
             "Reliable data access, transaction integrity, backup recovery",
             "Manage 1M+ records, support horizontal scaling"),
    "integration": ("External calls <2s, retry success 95%",
                    "Seamless data flow, error handling, monitoring dashboards",
                    "Handle 50+ external connections, batch processing"),
    "general": ("System response <1s, availability 99.5%",
                "User-friendly operation, clear feedback, error recovery",
                "Scale with system growth, maintain performance standards"),
}

# (summary, given, when, then, test suffix); summary and given take the title.
FUNCTIONAL_REQUIREMENTS = {
    "auth": ("User authentication with {lower}", "User provides valid credentials",
             "System processes authentication request", "User gains access with appropriate permissions",
             "authentication"),
    "ui": ("{title} user interface implementation", "User navigates to {lower} section",
           "Interface loads and renders components", "User can interact with all intended features",
           "ui_functionality"),
    "api": ("{title} API endpoint implementation", "Client sends valid API request for {lower}",
            "Server processes request with proper validation",
            "Client receives expected response with correct data", "api_endpoint"),
    "data": ("{title} data management functionality", "System needs to manage {lower} data",
             "Data operations (CRUD) are performed", "Data is stored, retrieved, and modified correctly",
             "data_operations"),
    "integration": ("{title} integration functionality", "System needs to integrate {lower}",
                    "Integration processes are triggered", "Data flows correctly between systems",
                    "integration_flow"),
    "general": ("{title} core functionality", "User initiates {lower} operation",
                "System processes the request", "Operation completes successfully with expected results",
                "functionality"),
}

USER_STORIES = {
    "auth": ("As a user, I want to {lower} so that I can securely access the system", (
        "Login form accepts valid credentials",
        "System validates user permissions",
        "Session is established securely",
        "User is redirected to appropriate dashboard",
    )),
    "ui": ("As a user, I want to use {lower} interface so that I can accomplish my tasks efficiently", (
        "Interface loads quickly and responsively",
        "All interactive elements work as expected",
        "Visual feedback is provided for user actions",
        "Interface is accessible and mobile-friendly",
    )),
    "api": ("As a developer, I want to use {lower} API so that I can integrate the functionality "
            "into my application", (
                "API endpoints are documented and accessible",
                "Responses follow consistent format",
                "Error handling is comprehensive",
                "Rate limiting and security are implemented",
            )),
    "general": ("As a user, I want {lower} functionality so that I can achieve my goals effectively", (
        "Feature works as described in requirements",
        "Performance meets specified benchmarks",
        "Error handling provides clear feedback",
        "Feature integrates well with existing system",
    )),
}

# (name, what is excluded, reason)
NON_GOALS = {
    "auth": (
        ("Advanced SSO Integration", "No enterprise SSO providers", "Focus on core authentication first"),
        ("Biometric Authentication", "No fingerprint/face recognition", "Added complexity without immediate need"),
        ("Advanced Audit Logging", "No detailed user activity tracking",
         "Basic logging sufficient for initial version"),
    ),
    "ui": (
        ("Advanced Animations", "No complex micro-interactions", "Focus on core functionality first"),
        ("Theming System", "No custom themes or dark mode", "Standard styling sufficient initially"),
        ("Advanced Accessibility", "No WCAG AAA compliance", "WCAG AA compliance is sufficient"),
    ),
    "api": (
        ("GraphQL Support", "No GraphQL endpoints", "REST API sufficient for current needs"),
        ("Real-time WebSockets", "No live data streaming", "Request/response pattern adequate"),
        ("Advanced Caching", "No Redis or complex caching", "Basic caching meets performance requirements"),
    ),
    "data": (
        ("Advanced Analytics", "No complex reporting or dashboards", "Focus on core data operations"),
        ("Data Warehousing", "No OLAP or analytical processing", "Transactional data sufficient"),
        ("Advanced Backup", "No point-in-time recovery", "Standard backup procedures adequate"),
    ),
    "integration": (
        ("Real-time Sync", "No instant bidirectional synchronization", "Batch processing sufficient"),
        ("Advanced Retry Logic", "No exponential backoff strategies", "Simple retry mechanism adequate"),
        ("Complex Workflows", "No multi-step approval processes", "Direct integration preferred"),
    ),
    "general": (
        ("Advanced Configuration", "No complex customization options", "Standard configuration sufficient"),
        ("Multi-tenancy", "No tenant isolation features", "Single-tenant architecture adequate"),
        ("Advanced Monitoring", "No detailed performance analytics", "Basic monitoring meets requirements"),
    ),
}

# (pattern, flow, security)
ARCHITECTURE = {
    "auth": ("JWT-based authentication → Role validation → Permission checking",
             "Client credentials → Authentication service → JWT token → Permission validation",
             "Password hashing, session management, CSRF protection, rate limiting"),
    "ui": ("Component-based architecture → State management → Event handling",
           "User interaction → Component state → Action dispatch → UI update",
           "XSS prevention, CSRF tokens, input sanitization, secure cookies"),
    "api": ("RESTful services → Data validation → Response formatting",
            "API request → Validation → Business logic → Database → Response",
            "API key validation, rate limiting, input validation, SQL injection prevention"),
    "data": ("Repository pattern → Service layer → Data access objects",
             "Data input → Validation → Transformation → Storage → Retrieval",
             "Data encryption, access controls, audit logging, backup security"),
    "integration": ("MCP protocol → Message queuing → Event-driven processing",
                    "External trigger → Message processing → Data transformation → System update",
                    "API authentication, data validation, secure transmission, error handling"),
    "general": ("Layered architecture → Service abstraction → Clean interfaces",
                "User input → Processing → Validation → Storage → Response",
                "Standard security practices, input validation, secure communication"),
}

COMPONENT_SKETCHES = {
    "auth": ("class AuthenticationService:\n"
             "    async def authenticate(self, credentials):\n"
             "        # validate credentials, issue token, open session\n"
             "        ..."),
    "ui": ("class FeatureComponent:\n"
           "    def render(self, data, on_action):\n"
           "        # build UI elements and wire actions\n"
           "        ..."),
    "api": ("class ApiController:\n"
            "    async def handle_request(self, payload):\n"
            "        # validate input, run business logic, format response\n"
            "        ..."),
    "data": ("class DataService:\n"
             "    async def create(self, data):\n"
             "        # validate data, persist, return created entity\n"
             "        ..."),
    "integration": ("class IntegrationService:\n"
                    "    async def process_external_data(self, data):\n"
                    "        # transform, validate format, update internal systems\n"
                    "        ..."),
    "general": ("class FeatureService:\n"
                "    async def execute(self, feature_input):\n"
                "        # process input, apply business logic, return result\n"
                "        ..."),
}

TESTING_STRATEGIES = {
    "auth": (("Unit Tests", "Authentication logic, token validation, password hashing"),
             ("Integration Tests", "Login flow, session management, permission checks"),
             ("Security Tests", "Penetration testing, vulnerability scanning"),
             ("Performance Tests", "Concurrent login load, token generation speed")),
    "ui": (("Unit Tests", "Component rendering, state management, event handling"),
           ("Integration Tests", "User workflows, form validation, navigation"),
           ("E2E Tests", "Complete user journeys, cross-browser compatibility"),
           ("Accessibility Tests", "Screen reader compatibility, keyboard navigation")),
    "api": (("Unit Tests", "Controller logic, data validation, response formatting"),
            ("Integration Tests", "Database interactions, external service calls"),
            ("API Tests", "Endpoint functionality, error handling, rate limiting"),
            ("Performance Tests", "Response times, throughput, concurrent requests")),
    "data": (("Unit Tests", "Data models, validation logic, transformation functions"),
             ("Integration Tests", "Database operations, migration scripts"),
             ("Performance Tests", "Query optimization, large dataset handling"),
             ("Data Integrity Tests", "Constraint validation, referential integrity")),
    "integration": (("Unit Tests", "Message processing, data transformation, validation"),
                    ("Integration Tests", "External system communication, error handling"),
                    ("End-to-End Tests", "Complete data flow, system synchronization"),
                    ("Reliability Tests", "Network failures, retry mechanisms, data consistency")),
    "general": (("Unit Tests", "Core functionality, business logic, utility functions"),
                ("Integration Tests", "Component interactions, data flow"),
                ("System Tests", "Complete feature workflows, error scenarios"),
                ("Performance Tests", "Response times, resource usage, scalability")),
}

SUCCESS_METRICS = {
    "auth": (("Security", "100% password hashing, session timeout enforced"),
             ("Performance", "Login <500ms, token validation <100ms"),
             ("Reliability", "99.9% authentication success rate")),
    "ui": (("Performance", "Page load <2s, interaction response <200ms"),
           ("Usability", "95% user task completion rate"),
           ("Accessibility", "WCAG AA compliance verified")),
    "api": (("Performance", "API response <300ms, throughput 1000 req/s"),
            ("Reliability", "99.5% uptime, comprehensive error handling"),
            ("Documentation", "100% endpoint documentation coverage")),
    "data": (("Performance", "Query response <100ms, transaction integrity 100%"),
             ("Reliability", "Data consistency checks pass"),
             ("Scale", "Handle expected data volume efficiently")),
    "integration": (("Reliability", "95% external call success rate with retries"),
                    ("Performance", "Integration processes complete within SLA"),
                    ("Monitoring", "Full integration health dashboard")),
    "general": (("Functionality", "100% requirements implemented and tested"),
                ("Performance", "System response within specified limits"),
                ("Quality", "Code review approval and test coverage >80%")),
}
COMPLEX_SUCCESS_METRICS = (
    ("Complexity Management", "Architecture review approved"),
    ("Integration", "Seamless compatibility with existing systems"),
)


def _for_group(table: Dict[str, object], group: str):
    return table.get(group, table["general"])


def layer_code(layer: str) -> str:
    """First three letters of the layer's first word, uppercased."""
    words = layer.split()
    return words[0].upper()[:3] if words else "TSK"


def distribute_tasks(estimated_tasks: int, layer_count: int) -> List[int]:
    """Split a task estimate across layers.

    Every layer gets at least one task and earlier layers absorb the
    remainder, so the total is ``max(estimated_tasks, layer_count)``.
    """
    if layer_count <= 0:
        return []
    base, remainder = divmod(max(estimated_tasks, layer_count), layer_count)
    return [base + (1 if index < remainder else 0) for index in range(layer_count)]


def count_planned_tasks(plan: ImplementationPlanSpec) -> int:
    return sum(distribute_tasks(plan.estimated_tasks, len(plan.layers)))


def render_layer_tasks(layer: str, count: int, seq: int) -> Tuple[str, int]:
    """Render one layer's header and ``count`` task lines starting at ``seq``.

    Returns the markdown and the next unused sequence number.
    """
    code = layer_code(layer)
    templates = LAYER_TASK_TEMPLATES.get(layer, FALLBACK_LAYER_TASKS)

    lines = [f"#### {layer} ({code}-XXX)"]
    for index in range(count):
        description = templates[index % len(templates)]
        cycle = index // len(templates)
        if cycle:
            description = f"{description} (phase {cycle + 1})"
        lines.append(f"- [ ] **{code}-{seq:03d}**: {description} [Estimate: {DEFAULT_TASK_ESTIMATE}]")
        seq += 1

    return "\n".join(lines), seq


def render_task_breakdown(plan: ImplementationPlanSpec) -> str:
    sections = []
    seq = 1
    for layer, count in zip(plan.layers, distribute_tasks(plan.estimated_tasks, len(plan.layers))):
        section, seq = render_layer_tasks(layer, count, seq)
        sections.append(section)
    return "\n\n".join(sections)


def _render_dependencies(layers: Sequence[str]) -> str:
    lines = []
    for index, layer in enumerate(layers):
        if index == 0:
            lines.append(f"- {layer} is the foundation layer")
        else:
            lines.append(f"- {layer} depends on {layers[index - 1]}")
    lines.append("- All implementation tasks must complete before testing begins")
    return "\n".join(lines)


def _render_parallel_opportunities(layers: Sequence[str]) -> str:
    if len(layers) <= 2:
        return ("- Documentation can be written alongside implementation\n"
                "- Test planning can begin during design phase")

    middle = len(layers) // 2
    first_wave = " and ".join(layers[1:middle + 1])
    second_wave = " and ".join(layers[middle + 1:])
    return (f"- {first_wave} can be developed simultaneously after {layers[0]}\n"
            f"- {second_wave} can begin once core layers are stable\n"
            "- Documentation and testing can be written alongside implementation")


def _render_functional_requirements(title: str, group: str) -> str:
    summary, given, when, then, suffix = _for_group(FUNCTIONAL_REQUIREMENTS, group)
    lower = title.lower()
    base_name = "-".join(title.split()).lower()
    return (f"- **FR-001**: {summary.format(title=title, lower=lower)}\n"
            f"  - **Given**: {given.format(title=title, lower=lower)}\n"
            f"  - **When**: {when}\n"
            f"  - **Then**: {then}\n"
            f"  - **Acceptance**: Verified by test `test_{base_name}_{suffix}`")


def _render_user_stories(title: str, group: str) -> str:
    story, criteria = _for_group(USER_STORIES, group)
    lines = [f"- **US-001**: {story.format(lower=title.lower())}", "  - **Acceptance Criteria**:"]
    lines.extend(f"    {number}. {item}" for number, item in enumerate(criteria, start=1))
    return "\n".join(lines)


def _render_success_metrics(group: str, complexity: str) -> str:
    metrics = list(_for_group(SUCCESS_METRICS, group))
    if complexity == "complex":
        metrics.extend(COMPLEX_SUCCESS_METRICS)
    return "\n".join(f"- **{name}**: {value}" for name, value in metrics)


def format_spec_content(
    profile: RequirementProfile,
    plan: ImplementationPlanSpec,
    today: Optional[date] = None,
) -> str:
    """Render a full specification document for ``profile`` and ``plan``."""
    today = today or datetime.now(timezone.utc).date()
    title = profile.title
    group = profile.detected_group
    theme = profile.detected_theme
    complexity = profile.complexity
    layers = list(plan.layers)
    estimated = plan.estimated_tasks

    impact = _for_group(IMPACTS, group)
    if complexity == "complex":
        impact = f"{impact} with significant architectural changes"
    risk_level = "Medium" if complexity == "complex" else "Low"
    primary_users, secondary_users = _for_group(TARGET_USERS, group)
    performance, usability, scale = _for_group(CORE_GOALS, group)
    pattern, flow, security = _for_group(ARCHITECTURE, group)
    non_goals = "\n".join(
        f"- **{name}**: {what} - **Reason**: {reason}" for name, what, reason in _for_group(NON_GOALS, group)
    )
    testing = "\n".join(f"- **{kind}**: {scope}" for kind, scope in _for_group(TESTING_STRATEGIES, group))
    slug = "-".join(title.lower().split())
    distribution = distribute_tasks(estimated, len(layers))
    layer_counts = "\n".join(f"- {layer}: {count} tasks" for layer, count in zip(layers, distribution))

    sections = [
        f"# SPEC-{today.strftime('%Y%m%d')}-{slug}",
        "",
        "## Executive Summary",
        f"**Feature**: {title}",
        f"**Impact**: {impact}",
        f"**Effort**: {estimated} tasks across {len(layers)} layers",
        f"**Risk**: {risk_level} - {_for_group(RISKS, group)}",
        f"**Dependencies**: {_for_group(DEPENDENCIES, group)}",
        "",
        "## Product Specifications",
        "",
        "### Elevator Pitch",
        (f"A {theme} solution for {title.lower()} that enhances the {group} capabilities of the system "
         "through efficient implementation and seamless integration."),
        "",
        "### Target Users",
        f"- **Primary**: {primary_users}",
        f"- **Secondary**: {secondary_users}",
        "",
        "### Core Goals",
        f"1. **Performance**: {performance}",
        f"2. **Usability**: {usability}",
        f"3. **Scale**: {scale}",
        "",
        "### Functional Requirements",
        _render_functional_requirements(title, group),
        "",
        "### User Stories",
        _render_user_stories(title, group),
        "",
        "### Non-Goals",
        non_goals,
        "",
        "## Technical Specifications",
        "",
        "### System Architecture",
        f"- **Pattern**: {pattern}",
        f"- **Flow**: {flow}",
        f"- **Security**: {security}",
        "",
        "### Component Design",
        f"**{theme.capitalize()} Architecture:**",
        "```python",
        _for_group(COMPONENT_SKETCHES, group),
        "```",
        "",
        "### Testing Strategy",
        testing,
        "",
        "## Implementation Plan",
        "",
        "### Task Breakdown",
        "",
        render_task_breakdown(plan),
        "",
        "### Dependencies",
        _render_dependencies(layers),
        "",
        "## Success Metrics",
        _render_success_metrics(group, complexity),
        "",
        "## Timeline",
        (f"**Total Effort**: {estimated} tasks "
         f"({math.ceil(estimated / 3)}-{math.ceil(estimated / 2)} developer days)"),
        f"**Critical Path**: {' → '.join(layers)}",
        f"**Recommended Approach**: {plan.recommended_approach}",
        "",
        layer_counts,
        "",
        "**Parallel Development Opportunities:**",
        _render_parallel_opportunities(layers),
        "",
    ]
    return "\n".join(sections)
