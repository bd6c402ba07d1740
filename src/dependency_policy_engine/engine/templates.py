"""Policy template catalog.

Templates are bundled as static YAML files inside the package and loaded
once at startup. Each file holds one PolicyTemplate using the model's
snake_case field names. A file that fails to parse or validate is logged and
skipped; the rest of the catalog still loads.
"""

from pathlib import Path

import yaml
from pydantic import ValidationError

from dependency_policy_engine.core.models import PolicyTemplate
from dependency_policy_engine.errors import NotFoundError
from dependency_policy_engine.observability import get_logger

logger = get_logger(__name__)

# Path to the bundled YAML template directory
DEFAULT_TEMPLATE_DIR = Path(__file__).parent.parent / "templates"


class TemplateCatalog:
    """In-memory catalog of policy templates keyed by template id.

    Args:
        template_dir: Directory containing *.yaml template files.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        self._templates: dict[str, PolicyTemplate] = {}
        self._load(template_dir or DEFAULT_TEMPLATE_DIR)

    def _load(self, template_dir: Path) -> None:
        if not template_dir.exists():
            logger.warning("Template directory not found, no templates loaded", template_dir=str(template_dir))
            return

        for yaml_file in sorted(template_dir.glob("*.yaml")):
            try:
                raw = yaml.safe_load(yaml_file.read_text(encoding="utf-8"))
                template = PolicyTemplate.model_validate(raw)
            except (OSError, yaml.YAMLError, ValidationError) as exc:
                logger.error("Failed to load policy template", yaml_file=str(yaml_file), error=str(exc))
                continue
            self._templates[template.id] = template
            logger.debug("Loaded policy template", template_id=template.id, rule_count=len(template.rules))

        logger.info("Policy templates loaded", count=len(self._templates), template_ids=list(self._templates))

    def register(self, template: PolicyTemplate) -> None:
        """Add or replace a template at runtime."""
        self._templates[template.id] = template

    def list_templates(self) -> list[PolicyTemplate]:
        return list(self._templates.values())

    def get(self, template_id: str) -> PolicyTemplate:
        """Return a template by id.

        Raises:
            NotFoundError: If no template has the given id.
        """
        template = self._templates.get(template_id)
        if template is None:
            raise NotFoundError("Template", template_id)
        return template
