"""
Schema and business-rule validation for task definitions.

Validation is pure: it reads nothing from storage. Callers pass in the set of
task numbers that are already persisted.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

import structlog
from pydantic import ValidationError

from tasktree.tasks.models import TaskInput, ValidationIssue, ValidationReport, ValidationSummary
from tasktree.tasks.numbering import segment_count

logger = structlog.get_logger(__name__)

TaskDefinition = Union[TaskInput, Mapping[str, Any]]

_VALUE_ERROR_PREFIX = "Value error, "


def issues_from_validation_error(
    exc: ValidationError,
    task_number: Optional[str] = None,
    index: Optional[int] = None,
) -> List[ValidationIssue]:
    """Flatten a pydantic ValidationError into field-level issues."""
    issues = []
    for error in exc.errors():
        message = error["msg"]
        if message.startswith(_VALUE_ERROR_PREFIX):
            message = message[len(_VALUE_ERROR_PREFIX):]
        issues.append(
            ValidationIssue(
                task=task_number,
                field=".".join(str(part) for part in error["loc"]) or "task",
                error=message,
                code="schema",
                index=index,
            )
        )
    return issues


class TaskValidator:
    """Validates single task definitions and import batches."""

    def validate_single(self, data: TaskDefinition) -> List[ValidationIssue]:
        """Schema check for one definition. Empty list means valid."""
        _, issues = self._parse(data, index=None)
        return issues

    def validate_import(
        self,
        tasks: Sequence[TaskDefinition],
        known_numbers: Optional[Iterable[str]] = None,
    ) -> ValidationReport:
        """
        Validate a whole batch before anything is written.

        Args:
            tasks: Task definitions in import order
            known_numbers: Numbers already persisted in the store
        """
        report, _ = self.validate_batch(tasks, known_numbers)
        return report

    def validate_batch(
        self,
        tasks: Sequence[TaskDefinition],
        known_numbers: Optional[Iterable[str]] = None,
    ) -> Tuple[ValidationReport, List[Optional[TaskInput]]]:
        """
        Validate a batch and return the parsed definitions alongside the report.

        Parsed entries that failed the schema check are None.
        """
        known: Set[str] = set(known_numbers or ())
        issues: List[ValidationIssue] = []
        parsed: List[Optional[TaskInput]] = []

        for index, data in enumerate(tasks):
            definition, schema_issues = self._parse(data, index=index)
            parsed.append(definition)
            issues.extend(schema_issues)

        batch_numbers = {d.number for d in parsed if d is not None}
        seen: Set[str] = set()
        unique: Dict[str, Tuple[int, TaskInput]] = {}

        for index, definition in enumerate(parsed):
            if definition is None:
                continue
            number = definition.number

            if number in seen:
                issues.append(
                    ValidationIssue(
                        task=number,
                        field="number",
                        error=f"Duplicate task number {number} in import",
                        code="duplicate",
                        index=index,
                    )
                )
                continue
            seen.add(number)
            unique[number] = (index, definition)

            issues.extend(self._check_parent(definition, index, known, seen))
            issues.extend(self._check_dependencies(definition, index, known, batch_numbers))

        issues.extend(self._check_cycles(unique))

        invalid_indices = {issue.index for issue in issues}
        summary = ValidationSummary(
            total=len(tasks),
            valid=len(tasks) - len(invalid_indices),
            invalid=len(invalid_indices),
        )
        report = ValidationReport(valid=not issues, errors=issues, summary=summary)

        if not report.valid:
            logger.info(
                "Import batch failed validation",
                total=summary.total,
                invalid=summary.invalid,
                issues=len(issues),
            )
        return report, parsed

    def find_cycle(
        self,
        number: str,
        dependencies: Iterable[str],
        graph: Mapping[str, Sequence[str]],
    ) -> Optional[str]:
        """
        Check whether giving `number` these dependencies closes a cycle.

        Args:
            number: Task whose dependencies are being replaced
            dependencies: Proposed dependency numbers
            graph: Existing edges, task number -> dependency numbers

        Returns:
            The proposed dependency that leads back to `number`, None if acyclic
        """
        visited: Set[str] = set()
        for start in dependencies:
            stack = [start]
            while stack:
                current = stack.pop()
                if current == number:
                    return start
                if current in visited:
                    continue
                visited.add(current)
                stack.extend(graph.get(current, ()))
        return None

    # ============================================================================
    # RULES
    # ============================================================================

    def _parse(
        self, data: TaskDefinition, index: Optional[int]
    ) -> Tuple[Optional[TaskInput], List[ValidationIssue]]:
        if isinstance(data, TaskInput):
            return data, []
        if not isinstance(data, Mapping):
            return None, [
                ValidationIssue(
                    field="task",
                    error="Task definition must be an object",
                    code="schema",
                    index=index,
                )
            ]

        raw_number = data.get("number")
        task_number = raw_number if isinstance(raw_number, str) else None
        try:
            return TaskInput.model_validate(dict(data)), []
        except ValidationError as e:
            return None, issues_from_validation_error(e, task_number=task_number, index=index)

    def _check_parent(
        self,
        definition: TaskInput,
        index: int,
        known: Set[str],
        seen: Set[str],
    ) -> List[ValidationIssue]:
        parent = definition.parent
        if parent is None:
            return []

        issues = []
        if parent == definition.number:
            issues.append(
                ValidationIssue(
                    task=definition.number,
                    field="parent",
                    error="Task cannot be its own parent",
                    code="self_reference",
                    index=index,
                )
            )
        elif parent not in known and parent not in seen:
            issues.append(
                ValidationIssue(
                    task=definition.number,
                    field="parent",
                    error=f"Parent task {parent} not found in store or earlier in import",
                    code="parent_not_found",
                    index=index,
                )
            )

        if segment_count(definition.number) < segment_count(parent):
            issues.append(
                ValidationIssue(
                    task=definition.number,
                    field="number",
                    error=(
                        f"Task number {definition.number} cannot have fewer levels "
                        f"than parent {parent}"
                    ),
                    code="hierarchy",
                    index=index,
                )
            )
        return issues

    def _check_dependencies(
        self,
        definition: TaskInput,
        index: int,
        known: Set[str],
        batch_numbers: Set[str],
    ) -> List[ValidationIssue]:
        issues = []
        for dependency in definition.dependencies:
            if dependency == definition.number:
                issues.append(
                    ValidationIssue(
                        task=definition.number,
                        field="dependencies",
                        error="Task cannot depend on itself",
                        code="self_reference",
                        index=index,
                    )
                )
            elif dependency not in known and dependency not in batch_numbers:
                issues.append(
                    ValidationIssue(
                        task=definition.number,
                        field="dependencies",
                        error=f"Dependency {dependency} not found in store or import",
                        code="dependency_not_found",
                        index=index,
                    )
                )
        return issues

    def _check_cycles(self, unique: Dict[str, Tuple[int, TaskInput]]) -> List[ValidationIssue]:
        """
        Report dependency cycles among batch entries.

        Iterative depth-first search. Self-dependencies are reported elsewhere.
        """
        white, grey, black = 0, 1, 2
        color = {number: white for number in unique}
        issues = []

        for start in unique:
            if color[start] != white:
                continue
            color[start] = grey
            stack = [(start, iter(unique[start][1].dependencies))]
            while stack:
                number, deps = stack[-1]
                advanced = False
                for dep in deps:
                    if dep == number or dep not in unique:
                        continue
                    if color[dep] == white:
                        color[dep] = grey
                        stack.append((dep, iter(unique[dep][1].dependencies)))
                        advanced = True
                        break
                    if color[dep] == grey:
                        issues.append(
                            ValidationIssue(
                                task=number,
                                field="dependencies",
                                error=f"Circular dependency detected with {dep}",
                                code="cycle",
                                index=unique[number][0],
                            )
                        )
                if not advanced:
                    color[number] = black
                    stack.pop()
        return issues
