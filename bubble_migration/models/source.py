"""Pydantic models for the Bubble objects the engine reads.

Field aliases are the Bubble field names verbatim, including their stray
spaces and typos; every model ignores fields it does not declare.
"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class BubbleRecordModel(BaseModel):
    """Fields every Bubble data type carries."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="_id", min_length=1)
    created_date: Optional[str] = Field(None, alias="Created Date")
    modified_date: Optional[str] = Field(None, alias="Modified Date")
    created_by: Optional[str] = Field(None, alias="Created By")
    slug: Optional[str] = Field(None, alias="Slug")


class BubbleAssociation(BubbleRecordModel):
    name: Optional[str] = Field(None, alias="Name")
    active: Optional[bool] = Field(None, alias="Active")
    companies: Optional[List[str]] = Field(None, alias="Companies")


class BubbleStack(BubbleRecordModel):
    name: Optional[str] = Field(None, alias="Name")
    association: Optional[str] = Field(None, alias="a_Association")
    is_bundle: Optional[bool] = Field(None, alias="a_Is Bundle")


class BubbleCompany(BubbleRecordModel):
    name: Optional[str] = Field(None, alias="Name")
    active: Optional[bool] = Field(None, alias="Active")
    show_as_supplier: Optional[bool] = Field(None, alias="Show as supplier")
    hide_hq_import: Optional[bool] = Field(None, alias="Hide HQimport")
    is_zapier: Optional[bool] = Field(None, alias="isZapier")
    email_suffix: Optional[str] = Field(None, alias="EmailSuffix")
    location_text: Optional[str] = Field(None, alias="location text")
    logo: Optional[str] = Field(None, alias="Logo")
    plan_started: Optional[str] = Field(None, alias="Plan Started")
    subscription_trial_ends: Optional[str] = Field(None, alias="Subscription Trial Ends")
    subscription_expired: Optional[bool] = Field(None, alias="Subscription Expired")
    subscription_sheets_allowed: Optional[int] = Field(None, alias="Subscription sheets allowed")
    premium_features_requested: Optional[List[str]] = Field(None, alias="Premium Features Requested")


class BubbleEmail(BaseModel):
    email: Optional[str] = None
    email_confirmed: Optional[bool] = None


class BubbleAuthentication(BaseModel):
    email: Optional[BubbleEmail] = None


class BubbleUser(BubbleRecordModel):
    authentication: Optional[BubbleAuthentication] = None
    first_name: Optional[str] = Field(None, alias="First name")
    last_name: Optional[str] = Field(None, alias="Last name")
    full_name: Optional[str] = Field(None, alias="Full Name")
    phone_text: Optional[str] = Field(None, alias="Phone text")
    company: Optional[str] = Field(None, alias="Company")
    user_type: Optional[str] = Field(None, alias="user-type")
    language: Optional[str] = Field(None, alias="Language")
    is_company_point_person: Optional[bool] = Field(None, alias="is comp point person")
    is_supplier_point_person: Optional[bool] = Field(None, alias="is sup point person")
    invitation_sent: Optional[bool] = Field(None, alias="Invitation sent")
    profile_done: Optional[bool] = Field(None, alias="Profile done")
    email_count: Optional[int] = Field(None, alias="Email Count")

    @property
    def email(self) -> Optional[str]:
        if self.authentication and self.authentication.email:
            return self.authentication.email.email
        return None


class BubbleListTable(BubbleRecordModel):
    name: Optional[str] = Field(None, alias="Name")


class BubbleListTableColumn(BubbleRecordModel):
    name: Optional[str] = Field(None, alias="Name")
    response_type: Optional[str] = Field(None, alias="Response type")
    order: Optional[float] = Field(None, alias="Order")
    parent_table: Optional[str] = Field(None, alias="Parent Table")


class BubbleListTableRow(BubbleRecordModel):
    row_number: Optional[int] = Field(None, alias="ID")
    table: Optional[str] = Field(None, alias="Table")


class BubbleSection(BubbleRecordModel):
    name: Optional[str] = Field(None, alias="Name")
    order: Optional[float] = Field(None, alias="Order")
    help: Optional[str] = Field(None, alias="Help")
    stack: Optional[str] = Field(None, alias="Stack")
    association: Optional[str] = Field(None, alias="Association")
    questionnaire_text: Optional[str] = Field(None, alias="Questioniare Text")


class BubbleSubsection(BubbleRecordModel):
    name: Optional[str] = Field(None, alias="Name")
    show_title_and_group: Optional[bool] = Field(None, alias="Show Tittle and Group")
    section: Optional[str] = Field(None, alias="Section")
    order: Optional[float] = Field(None, alias="Order")


class BubbleTag(BubbleRecordModel):
    name: Optional[str] = Field(None, alias="Name")
    description: Optional[str] = Field(None, alias="Description")
    group: Optional[int] = Field(None, alias="Group")
    company: Optional[str] = Field(None, alias="Company (will be used new architecture Arpil 2022)")
    custom_company: Optional[str] = Field(None, alias="Custom Company")
    custom_active: Optional[bool] = Field(None, alias="Custom ACTIVE (N/U)")
    custom_any_can_view: Optional[bool] = Field(None, alias="Custom Any Can View")
    hidden_from_companies: Optional[List[str]] = Field(None, alias="UX Not Show To These Companies")


class BubbleQuestion(BubbleRecordModel):
    name: Optional[str] = Field(None, alias="Name")
    content: Optional[str] = Field(None, alias="Content")
    description: Optional[str] = Field(None, alias="Question Description")
    clarification: Optional[str] = Field(None, alias="Clarification")
    clarification_yes_no: Optional[bool] = Field(None, alias="Clarification yes/no")
    question_type: Optional[str] = Field(None, alias="Type")
    question_number: Optional[int] = Field(None, alias="ID")
    order: Optional[float] = Field(None, alias="Order")
    required: Optional[bool] = Field(None, alias="Required")
    optional: Optional[bool] = Field(None, alias="Answer Optional")
    dependent_no_show: Optional[bool] = Field(None, alias="Dependent (no show)")
    lock: Optional[bool] = Field(None, alias="Lock")
    highlight: Optional[bool] = Field(None, alias="HighLite")
    section_sort_number: Optional[float] = Field(None, alias="SECTION SORT NUMBER")
    subsection_sort_number: Optional[float] = Field(None, alias="SUBSECTION SORT NUMBER")
    company: Optional[str] = Field(None, alias="Company")
    company_list: Optional[List[str]] = Field(None, alias="Company list")
    parent_section: Optional[str] = Field(None, alias="Parent Section")
    parent_subsection: Optional[str] = Field(None, alias="Parent Subsection")
    parent_choice: Optional[str] = Field(None, alias="Parent Choice")
    list_table: Optional[str] = Field(None, alias="List Table")
    tags: Optional[List[str]] = Field(None, alias="Tags")


class BubbleChoice(BubbleRecordModel):
    content: Optional[str] = Field(None, alias="Content")
    import_map: Optional[str] = Field(None, alias="Import Map")
    parent_question: Optional[str] = Field(None, alias="Parent Question")
    order: Optional[float] = Field(None, alias="Order")


class BubbleSheet(BubbleRecordModel):
    name: Optional[str] = Field(None, alias="Name")
    name_lower_case: Optional[str] = Field(None, alias="Name Lower Case")
    company: Optional[str] = Field(None, alias="Company")
    assigned_to: Optional[str] = Field(None, alias="Sup Assigned to")
    original_requestor: Optional[str] = Field(None, alias="Original Requestor assoc")
    requestor_name: Optional[str] = Field(None, alias="Requestor Name")
    requestor_email: Optional[str] = Field(None, alias="Requestor Email")
    new_status: Optional[str] = Field(None, alias="New Status")
    mark_as_archived: Optional[bool] = Field(None, alias="Mark as archived supplier")
    mark_as_test_sheet: Optional[bool] = Field(None, alias="Mark as a test sheet")
    version: Optional[int] = Field(None, alias="Version")
    version_lock: Optional[bool] = Field(None, alias="Version Lock")
    version_description: Optional[str] = Field(None, alias="Version Description")
    version_close_date: Optional[str] = Field(None, alias="Version Close Date")
    version_closed_by: Optional[str] = Field(None, alias="Version Closed by")
    father_sheet: Optional[str] = Field(None, alias="Version Father Sheet")
    prev_sheet: Optional[str] = Field(None, alias="Version Prev. Sheet")
    shareable_with: Optional[List[str]] = Field(None, alias="Shareable with ")
    questions: Optional[List[str]] = Field(None, alias="Questions")
    supplier_users_assigned: Optional[List[str]] = Field(None, alias="Supplier Users Assigned")
    tags: Optional[List[str]] = Field(None, alias="tags")


class BubbleAnswer(BubbleRecordModel):
    answer_name: Optional[str] = Field(None, alias="Answer_name")
    answer_number: Optional[int] = Field(None, alias="Answer_ID")
    order: Optional[float] = Field(None, alias="order")
    sheet: Optional[str] = Field(None, alias="Sheet")
    company: Optional[str] = Field(None, alias="Company")
    supplier: Optional[str] = Field(None, alias="Supplier")
    customer: Optional[str] = Field(None, alias="customer")
    originating_question: Optional[str] = Field(None, alias="Originating Question")
    parent_question: Optional[str] = Field(None, alias="Parent Question")
    parent_subsection: Optional[str] = Field(None, alias="Parent Subsection")
    stack: Optional[str] = Field(None, alias="Stack")
    choice: Optional[str] = Field(None, alias="Choice")
    list_table_column: Optional[str] = Field(None, alias="List Table Column")
    list_table_row: Optional[str] = Field(None, alias="List Table Row")
    text: Optional[str] = Field(None, alias="text")
    text_area: Optional[str] = Field(None, alias="text-area")
    number: Optional[float] = Field(None, alias="Number")
    boolean: Optional[bool] = Field(None, alias="Boolean")
    date: Optional[str] = Field(None, alias="Date")
    file: Optional[str] = Field(None, alias="File")
    support_file: Optional[str] = Field(None, alias="Support File")
    clarification: Optional[str] = Field(None, alias="Clarification")
    custom_comment_text: Optional[str] = Field(None, alias="Custom Comment Text")
    version_in_sheet: Optional[int] = Field(None, alias="Version in sheet")
    version_copied: Optional[bool] = Field(None, alias="Version Copied")
    shareable_with: Optional[List[str]] = Field(None, alias="Shareable with")
    text_choices: Optional[List[str]] = Field(None, alias="List of Text Choices")


class BubbleRequest(BubbleRecordModel):
    product_name: Optional[str] = Field(None, alias="Product name")
    requesting_company: Optional[str] = Field(None, alias="Requesting company")
    supplier: Optional[str] = Field(None, alias="Supplier ")
    sheet: Optional[str] = Field(None, alias="Sheet")
    processed: Optional[bool] = Field(None, alias="Processed")
    show_as_removed: Optional[bool] = Field(None, alias="show as removed")
    comment_requestor: Optional[str] = Field(None, alias="Comment Requestor")
    comment_supplier: Optional[str] = Field(None, alias="Comment Supplier")
    creator_email: Optional[str] = Field(None, alias="Creator Email")
    tags: Optional[List[str]] = Field(None, alias="tags")


class BubbleSheetStatus(BubbleRecordModel):
    sheet_name: Optional[str] = Field(None, alias="Sheet Name")
    sheet: Optional[str] = Field(None, alias="Sheet")
    company: Optional[str] = Field(None, alias="Company")
    supplier: Optional[str] = Field(None, alias="Supplier")
    father_of_sheet: Optional[str] = Field(None, alias="Father of Sheet")
    status: Optional[str] = Field(None, alias="Status")
    completed: Optional[bool] = Field(None, alias="Completed")
    observations: Optional[str] = Field(None, alias="Observations")
    version: Optional[int] = Field(None, alias="Version")
    reminders_count: Optional[int] = Field(None, alias="Reminders count")
