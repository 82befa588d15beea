"""Per-entity transforms from Bubble records to destination rows.

Each transform narrows the raw record through its pydantic model, maps the
plain columns, then resolves foreign keys through the mapping store. A key
whose referent has not been migrated yet is left as None for the linker.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from dateutil import parser as date_parser
from pydantic import BaseModel, ValidationError

from ..exceptions import TransformError
from ..models.record import JunctionRows, SourceRecord, TransformedRecord
from ..models.source import (
    BubbleAnswer,
    BubbleAssociation,
    BubbleChoice,
    BubbleCompany,
    BubbleListTable,
    BubbleListTableColumn,
    BubbleListTableRow,
    BubbleQuestion,
    BubbleRecordModel,
    BubbleRequest,
    BubbleSection,
    BubbleSheet,
    BubbleSheetStatus,
    BubbleStack,
    BubbleSubsection,
    BubbleTag,
    BubbleUser,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BubbleRecordModel)


@dataclass(frozen=True)
class LinkSpec:
    """A foreign-key column filled from a Bubble reference field."""
    column: str
    source_field: str
    target_type: str

    def source_value(self, record: SourceRecord) -> Optional[str]:
        value = record.data.get(self.source_field)
        if isinstance(value, str) and value:
            return value
        return None


@dataclass
class EntitySpec:
    """How one entity type is read, reshaped and linked."""
    entity_type: str  # mapping-store discriminator
    source_type: str  # Bubble object name
    table: str
    transform: Callable[[SourceRecord, Any], TransformedRecord]
    links: List[LinkSpec] = field(default_factory=list)
    # Bubble field -> entity type, for list fields feeding junction tables
    references: Dict[str, str] = field(default_factory=dict)
    # Warm the mapping cache for every link target before streaming
    preload: bool = False

    def __post_init__(self):
        for link in self.links:
            self.references.setdefault(link.source_field, link.target_type)


# Helpers

def _narrow(model: Type[ModelT], record: SourceRecord, entity_type: str) -> ModelT:
    try:
        return model.model_validate(record.data)
    except ValidationError as e:
        raise TransformError(
            f"Invalid {entity_type} record {record.id}: {e}",
            entity_type=entity_type,
            source_id=record.id,
        ) from e


def _iso(value: Optional[str], entity_type: str, source_id: str) -> Optional[str]:
    """Normalise a Bubble date string to ISO-8601."""
    if not value:
        return None
    try:
        return date_parser.isoparse(value).isoformat()
    except (ValueError, OverflowError) as e:
        raise TransformError(
            f"Unparseable date {value!r} on {entity_type} {source_id}",
            entity_type=entity_type,
            source_id=source_id,
        ) from e


def _flag(value: Optional[bool], default: bool = False) -> bool:
    return default if value is None else value


def _timestamps(model: BubbleRecordModel, entity_type: str) -> Dict[str, Optional[str]]:
    return {
        "created_at": _iso(model.created_date, entity_type, model.id),
        "modified_at": _iso(model.modified_date, entity_type, model.id),
    }


def resolve_links(record: SourceRecord, links: List[LinkSpec], resolver) -> Dict[str, Optional[str]]:
    """Resolve every link of a record through the mapping store."""
    return {
        link.column: resolver.get_destination_id(link.source_value(record), link.target_type)
        for link in links
    }


def _junction(
    table: str,
    parent_column: str,
    child_column: str,
    source_ids: Optional[List[str]],
    target_type: str,
    resolver,
    ordered: bool = False
) -> Optional[JunctionRows]:
    """Build junction rows for a list of Bubble references, dropping unresolved ones."""
    if not source_ids:
        return None

    resolved = resolver.get_destination_ids(source_ids, target_type)
    rows = []
    for source_id in dict.fromkeys(source_ids):
        destination_id = resolved.get(source_id)
        if destination_id is None:
            continue
        row = {child_column: destination_id}
        if ordered:
            row["order_number"] = len(rows)
        rows.append(row)

    if not rows:
        return None

    return JunctionRows(
        table=table,
        parent_column=parent_column,
        rows=rows,
        conflict_columns=[parent_column, child_column],
    )


def _record(
    record: SourceRecord,
    entity_type: str,
    table: str,
    data: Dict[str, Any],
    relations: Optional[List[Optional[JunctionRows]]] = None
) -> TransformedRecord:
    result = TransformedRecord(
        source_id=record.id,
        entity_type=entity_type,
        table=table,
        data=data,
        relations=[r for r in (relations or []) if r is not None],
        link_columns=[link.column for link in get_entity_spec(entity_type).links],
    )
    for column in result.pending_links:
        result.warnings.append(f"{column} left unresolved")
    return result


# Link declarations

CREATED_BY = LinkSpec("created_by", "Created By", "user")

STACK_LINKS = [LinkSpec("association_id", "a_Association", "association")]

USER_LINKS = [LinkSpec("company_id", "Company", "company")]

LIST_TABLE_LINKS = [CREATED_BY]

LIST_TABLE_COLUMN_LINKS = [
    LinkSpec("parent_table_id", "Parent Table", "list_table"),
    CREATED_BY,
]

LIST_TABLE_ROW_LINKS = [LinkSpec("table_id", "Table", "list_table")]

SECTION_LINKS = [
    LinkSpec("stack_id", "Stack", "stack"),
    LinkSpec("association_id", "Association", "association"),
    CREATED_BY,
]

SUBSECTION_LINKS = [LinkSpec("section_id", "Section", "section")]

TAG_LINKS = [
    LinkSpec("company_id", "Company (will be used new architecture Arpil 2022)", "company"),
    LinkSpec("custom_company_id", "Custom Company", "company"),
    CREATED_BY,
]

QUESTION_LINKS = [
    LinkSpec("company_id", "Company", "company"),
    LinkSpec("parent_section_id", "Parent Section", "section"),
    LinkSpec("parent_subsection_id", "Parent Subsection", "subsection"),
    LinkSpec("parent_choice_id", "Parent Choice", "choice"),
    LinkSpec("list_table_id", "List Table", "list_table"),
    CREATED_BY,
]

CHOICE_LINKS = [
    LinkSpec("parent_question_id", "Parent Question", "question"),
    CREATED_BY,
]

SHEET_LINKS = [
    LinkSpec("company_id", "Company", "company"),
    LinkSpec("assigned_to_company_id", "Sup Assigned to", "company"),
    LinkSpec("original_requestor_assoc_id", "Original Requestor assoc", "company"),
    LinkSpec("version_closed_by", "Version Closed by", "user"),
    CREATED_BY,
]

ANSWER_LINKS = [
    LinkSpec("sheet_id", "Sheet", "sheet"),
    LinkSpec("company_id", "Company", "company"),
    LinkSpec("supplier_id", "Supplier", "company"),
    LinkSpec("customer_id", "customer", "user"),
    LinkSpec("originating_question_id", "Originating Question", "question"),
    LinkSpec("parent_question_id", "Parent Question", "question"),
    LinkSpec("choice_id", "Choice", "choice"),
    LinkSpec("list_table_column_id", "List Table Column", "list_table_column"),
    LinkSpec("list_table_row_id", "List Table Row", "list_table_row"),
    LinkSpec("stack_id", "Stack", "stack"),
    LinkSpec("parent_subsection_id", "Parent Subsection", "subsection"),
    CREATED_BY,
]

REQUEST_LINKS = [
    LinkSpec("requestor_id", "Requesting company", "company"),
    LinkSpec("requesting_from_id", "Supplier ", "company"),
    LinkSpec("sheet_id", "Sheet", "sheet"),
    CREATED_BY,
]

SHEET_STATUS_LINKS = [
    LinkSpec("sheet_id", "Sheet", "sheet"),
    LinkSpec("company_id", "Company", "company"),
    LinkSpec("supplier_id", "Supplier", "company"),
    LinkSpec("father_of_sheet_id", "Father of Sheet", "sheet"),
    CREATED_BY,
]


# Transforms

def transform_association(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleAssociation, record, "association")

    data = {
        "bubble_id": bubble.id,
        "name": bubble.name or "Unknown Association",
        "active": _flag(bubble.active, True),
        **_timestamps(bubble, "association"),
    }

    return _record(record, "association", "associations", data, [
        _junction("association_companies", "association_id", "company_id",
                  bubble.companies, "company", resolver),
    ])


def transform_stack(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleStack, record, "stack")

    data = {
        "bubble_id": bubble.id,
        "name": bubble.name or "Unknown Stack",
        "is_bundle": _flag(bubble.is_bundle),
        **resolve_links(record, STACK_LINKS, resolver),
        **_timestamps(bubble, "stack"),
    }
    return _record(record, "stack", "stacks", data)


def transform_company(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleCompany, record, "company")
    name = bubble.name or "Unknown Company"

    data = {
        "bubble_id": bubble.id,
        "name": name,
        "name_lower_case": name.lower(),
        "email_suffix": bubble.email_suffix or None,
        "location_text": bubble.location_text or None,
        "logo_url": bubble.logo or None,
        "active": _flag(bubble.active, True),
        "show_as_supplier": _flag(bubble.show_as_supplier),
        "hide_hq_import": _flag(bubble.hide_hq_import),
        "is_zapier": _flag(bubble.is_zapier),
        "plan_started_at": _iso(bubble.plan_started, "company", bubble.id),
        "subscription_trial_ends": _iso(bubble.subscription_trial_ends, "company", bubble.id),
        "subscription_expired": _flag(bubble.subscription_expired),
        "subscription_sheets_allowed": bubble.subscription_sheets_allowed or None,
        "premium_features_requested": bubble.premium_features_requested or None,
        "slug": bubble.slug or None,
        **_timestamps(bubble, "company"),
    }
    return _record(record, "company", "companies", data)


def transform_user(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleUser, record, "user")

    if not bubble.email:
        raise TransformError(
            f"User {bubble.id} has no authentication email",
            entity_type="user",
            source_id=bubble.id,
        )

    data = {
        "bubble_id": bubble.id,
        "email": bubble.email.strip().lower(),
        "first_name": bubble.first_name or None,
        "last_name": bubble.last_name or None,
        "full_name": bubble.full_name or None,
        "phone_text": bubble.phone_text or None,
        "user_type": bubble.user_type or None,
        "language": bubble.language or None,
        "is_company_point_person": _flag(bubble.is_company_point_person),
        "is_supplier_pointguard": _flag(bubble.is_supplier_point_person),
        "invitation_sent": _flag(bubble.invitation_sent),
        "profile_done": _flag(bubble.profile_done),
        "email_count": bubble.email_count or 0,
        "slug": bubble.slug or None,
        **resolve_links(record, USER_LINKS, resolver),
        **_timestamps(bubble, "user"),
    }
    return _record(record, "user", "users", data)


def transform_list_table(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleListTable, record, "list_table")

    data = {
        "bubble_id": bubble.id,
        "name": bubble.name or None,
        **resolve_links(record, LIST_TABLE_LINKS, resolver),
        **_timestamps(bubble, "list_table"),
    }
    return _record(record, "list_table", "list_tables", data)


def transform_list_table_column(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleListTableColumn, record, "list_table_column")

    data = {
        "bubble_id": bubble.id,
        "name": bubble.name or "Unknown Column",
        "response_type": bubble.response_type or None,
        "order_number": bubble.order or None,
        **resolve_links(record, LIST_TABLE_COLUMN_LINKS, resolver),
        **_timestamps(bubble, "list_table_column"),
    }
    return _record(record, "list_table_column", "list_table_columns", data)


def transform_list_table_row(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleListTableRow, record, "list_table_row")

    data = {
        "bubble_id": bubble.id,
        "row_id": bubble.row_number or None,
        **resolve_links(record, LIST_TABLE_ROW_LINKS, resolver),
        **_timestamps(bubble, "list_table_row"),
    }
    return _record(record, "list_table_row", "list_table_rows", data)


def transform_section(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleSection, record, "section")

    data = {
        "bubble_id": bubble.id,
        "name": bubble.name or "Unknown Section",
        "order_number": bubble.order or None,
        "help": bubble.help or None,
        "questionnaire_text": bubble.questionnaire_text or None,
        **resolve_links(record, SECTION_LINKS, resolver),
        **_timestamps(bubble, "section"),
    }
    return _record(record, "section", "sections", data)


def transform_subsection(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleSubsection, record, "subsection")

    data = {
        "bubble_id": bubble.id,
        "name": bubble.name or "Unknown Subsection",
        "show_title_and_group": _flag(bubble.show_title_and_group, True),
        "order_number": bubble.order or None,
        **resolve_links(record, SUBSECTION_LINKS, resolver),
        **_timestamps(bubble, "subsection"),
    }
    return _record(record, "subsection", "subsections", data)


def transform_tag(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleTag, record, "tag")

    data = {
        "bubble_id": bubble.id,
        "name": bubble.name or "Unknown Tag",
        "description": bubble.description or None,
        "group_number": bubble.group or None,
        "custom_active": _flag(bubble.custom_active),
        "custom_any_can_see": _flag(bubble.custom_any_can_view),
        "slug": bubble.slug or None,
        **resolve_links(record, TAG_LINKS, resolver),
        **_timestamps(bubble, "tag"),
    }

    return _record(record, "tag", "tags", data, [
        _junction("tag_hidden_companies", "tag_id", "company_id",
                  bubble.hidden_from_companies, "company", resolver),
    ])


def transform_question(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleQuestion, record, "question")

    data = {
        "bubble_id": bubble.id,
        "name": bubble.name or None,
        "content": bubble.content or None,
        "question_description": bubble.description or None,
        "clarification": bubble.clarification or None,
        "clarification_yes_no": _flag(bubble.clarification_yes_no),
        "question_type": bubble.question_type or None,
        "question_id_number": bubble.question_number or None,
        "order_number": bubble.order or None,
        "required": _flag(bubble.required),
        "optional_question": _flag(bubble.optional),
        "dependent_no_show": _flag(bubble.dependent_no_show),
        "lock": _flag(bubble.lock),
        "highlight": _flag(bubble.highlight),
        "section_sort_number": bubble.section_sort_number or None,
        "subsection_sort_number": bubble.subsection_sort_number or None,
        "slug": bubble.slug or None,
        **resolve_links(record, QUESTION_LINKS, resolver),
        **_timestamps(bubble, "question"),
    }

    return _record(record, "question", "questions", data, [
        _junction("question_tags", "question_id", "tag_id", bubble.tags, "tag", resolver),
        _junction("question_companies", "question_id", "company_id",
                  bubble.company_list, "company", resolver),
    ])


def transform_choice(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleChoice, record, "choice")

    data = {
        "bubble_id": bubble.id,
        "content": bubble.content or None,
        "import_map": bubble.import_map or None,
        "order_number": bubble.order or None,
        **resolve_links(record, CHOICE_LINKS, resolver),
        **_timestamps(bubble, "choice"),
    }
    return _record(record, "choice", "choices", data)


def transform_sheet(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleSheet, record, "sheet")
    name = bubble.name or "Unnamed Sheet"

    data = {
        "bubble_id": bubble.id,
        "name": name,
        "name_lower_case": bubble.name_lower_case or (bubble.name.lower() if bubble.name else None),
        "requestor_name": bubble.requestor_name or None,
        "requestor_email": bubble.requestor_email or None,
        "new_status": bubble.new_status or None,
        "mark_as_archived": _flag(bubble.mark_as_archived),
        "mark_as_test_sheet": _flag(bubble.mark_as_test_sheet),
        "version": bubble.version or None,
        "version_lock": _flag(bubble.version_lock),
        "version_description": bubble.version_description or None,
        "version_close_date": _iso(bubble.version_close_date, "sheet", bubble.id),
        "slug": bubble.slug or None,
        **resolve_links(record, SHEET_LINKS, resolver),
        **_timestamps(bubble, "sheet"),
    }

    return _record(record, "sheet", "sheets", data, [
        _junction("sheet_shareable_companies", "sheet_id", "company_id",
                  bubble.shareable_with, "company", resolver),
        _junction("sheet_tags", "sheet_id", "tag_id", bubble.tags, "tag", resolver),
        _junction("sheet_questions", "sheet_id", "question_id",
                  bubble.questions, "question", resolver, ordered=True),
        _junction("sheet_supplier_users_assigned", "sheet_id", "user_id",
                  bubble.supplier_users_assigned, "user", resolver),
    ])


def transform_answer(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleAnswer, record, "answer")

    data = {
        "bubble_id": bubble.id,
        "answer_name": bubble.answer_name or None,
        "answer_id_number": bubble.answer_number or None,
        "order_number": bubble.order or None,
        "text_value": bubble.text or None,
        "text_area_value": bubble.text_area or None,
        "number_value": bubble.number,
        "boolean_value": bubble.boolean,
        "date_value": _iso(bubble.date, "answer", bubble.id),
        "file_url": bubble.file or None,
        "support_file_url": bubble.support_file or None,
        "clarification": bubble.clarification or None,
        "custom_comment_text": bubble.custom_comment_text or None,
        "version_in_sheet": bubble.version_in_sheet or None,
        "version_copied": _flag(bubble.version_copied),
        "slug": bubble.slug or None,
        **resolve_links(record, ANSWER_LINKS, resolver),
        **_timestamps(bubble, "answer"),
    }

    text_choices = None
    if bubble.text_choices:
        text_choices = JunctionRows(
            table="answer_text_choices",
            parent_column="answer_id",
            rows=[
                {"text_choice": choice, "order_number": index}
                for index, choice in enumerate(bubble.text_choices)
            ],
        )

    return _record(record, "answer", "answers", data, [
        _junction("answer_shareable_companies", "answer_id", "company_id",
                  bubble.shareable_with, "company", resolver),
        text_choices,
    ])


def transform_request(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleRequest, record, "request")

    data = {
        "bubble_id": bubble.id,
        "product_name": bubble.product_name or None,
        "processed": _flag(bubble.processed),
        "show_as_removed": _flag(bubble.show_as_removed),
        "comment_requestor": bubble.comment_requestor or None,
        "comment_supplier": bubble.comment_supplier or None,
        "creator_email": bubble.creator_email or None,
        "slug": bubble.slug or None,
        **resolve_links(record, REQUEST_LINKS, resolver),
        **_timestamps(bubble, "request"),
    }

    return _record(record, "request", "requests", data, [
        _junction("request_tags", "request_id", "tag_id", bubble.tags, "tag", resolver),
    ])


def transform_sheet_status(record: SourceRecord, resolver) -> TransformedRecord:
    bubble = _narrow(BubbleSheetStatus, record, "sheet_status")

    data = {
        "bubble_id": bubble.id,
        "sheet_name": bubble.sheet_name or None,
        "status": bubble.status or None,
        "completed": _flag(bubble.completed),
        "observations": bubble.observations or None,
        "version": bubble.version or None,
        "reminders_count": bubble.reminders_count or 0,
        "slug": bubble.slug or None,
        **resolve_links(record, SHEET_STATUS_LINKS, resolver),
        **_timestamps(bubble, "sheet_status"),
    }
    return _record(record, "sheet_status", "sheet_statuses", data)


# Registry, in dependency order

ENTITY_SPECS: Dict[str, EntitySpec] = {
    spec.entity_type: spec
    for spec in [
        EntitySpec("association", "associations", "associations", transform_association,
                   references={"Companies": "company"}),
        EntitySpec("stack", "stack", "stacks", transform_stack, STACK_LINKS),
        EntitySpec("company", "company", "companies", transform_company),
        EntitySpec("user", "user", "users", transform_user, USER_LINKS),
        EntitySpec("list_table", "listtable", "list_tables", transform_list_table, LIST_TABLE_LINKS),
        EntitySpec("list_table_column", "listtablecolumn", "list_table_columns",
                   transform_list_table_column, LIST_TABLE_COLUMN_LINKS),
        EntitySpec("section", "section", "sections", transform_section, SECTION_LINKS),
        EntitySpec("subsection", "subsection", "subsections", transform_subsection, SUBSECTION_LINKS),
        EntitySpec("tag", "tag", "tags", transform_tag, TAG_LINKS,
                   references={"UX Not Show To These Companies": "company"}),
        EntitySpec("question", "question", "questions", transform_question, QUESTION_LINKS,
                   references={"Tags": "tag", "Company list": "company"}),
        EntitySpec("choice", "choice", "choices", transform_choice, CHOICE_LINKS),
        EntitySpec("sheet", "sheet", "sheets", transform_sheet, SHEET_LINKS,
                   references={
                       "Shareable with ": "company",
                       "tags": "tag",
                       "Questions": "question",
                       "Supplier Users Assigned": "user",
                   }),
        EntitySpec("list_table_row", "listtablerow", "list_table_rows",
                   transform_list_table_row, LIST_TABLE_ROW_LINKS),
        EntitySpec("answer", "answer", "answers", transform_answer, ANSWER_LINKS,
                   references={"Shareable with": "company"}, preload=True),
        EntitySpec("request", "request", "requests", transform_request, REQUEST_LINKS,
                   references={"tags": "tag"}),
        EntitySpec("sheet_status", "sheetstatuses", "sheet_statuses",
                   transform_sheet_status, SHEET_STATUS_LINKS),
    ]
}

MIGRATION_ORDER: List[str] = list(ENTITY_SPECS)


def get_entity_spec(entity_type: str) -> EntitySpec:
    """Look up an entity spec by discriminator."""
    try:
        return ENTITY_SPECS[entity_type]
    except KeyError:
        raise KeyError(
            f"Unknown entity type '{entity_type}'. "
            f"Known types: {', '.join(MIGRATION_ORDER)}"
        ) from None
