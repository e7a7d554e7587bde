def build_ticket_code(
    project_code: str | None, company_ticket_number: int | None, ticket_id: str
) -> str:
    if project_code and company_ticket_number is not None:
        return f"{project_code}-{company_ticket_number}"
    if company_ticket_number is not None:
        return f"#{company_ticket_number}"
    return ticket_id
