"""
jurisdictions.py — descriptive profiles for each supported tax jurisdiction.

Every string here is baked verbatim into the system prompt (llm_service.py)
or the welcome turn. Adding a jurisdiction means adding a Jurisdiction enum
member and one entry in JURISDICTION_PROFILES.
"""
from dataclasses import dataclass

from taxthink.schemas import Jurisdiction


@dataclass(frozen=True)
class JurisdictionProfile:
    tax_system: str
    currency_label: str
    key_areas: str
    common_deductions: str
    compliance_items: str
    # Welcome turn
    display_name: str
    welcome_examples: str


JURISDICTION_PROFILES: dict[Jurisdiction, JurisdictionProfile] = {
    Jurisdiction.us: JurisdictionProfile(
        tax_system="United States federal and state tax system",
        currency_label="USD",
        key_areas=(
            "federal income tax, state taxes, IRS codes, deductions, credits, "
            "retirement accounts (401k, IRA), business entity types (LLC, S-Corp, C-Corp), "
            "self-employment tax, estimated quarterly payments"
        ),
        common_deductions=(
            "home office, business expenses, equipment depreciation, professional development, "
            "business insurance, vehicle expenses, business meals"
        ),
        compliance_items=(
            "Form 1040, Schedule C (business), quarterly estimated payments, "
            "state filing requirements, business license requirements"
        ),
        display_name="United States",
        welcome_examples=(
            "personal income tax, business deductions, retirement planning, "
            "state tax considerations"
        ),
    ),
    Jurisdiction.in_: JurisdictionProfile(
        tax_system="Indian tax system including Income Tax Act and GST",
        currency_label="INR",
        key_areas=(
            "Income Tax Act sections, GST, TDS (Tax Deducted at Source), advance tax, "
            "ITR forms, professional tax, business registration, MSME benefits"
        ),
        common_deductions=(
            "Section 80C (ELSS, PPF, insurance), Section 80D (health insurance), "
            "home loan interest, professional expenses, business equipment"
        ),
        compliance_items=(
            "ITR filing, GST returns, TDS compliance, advance tax payments, "
            "professional tax registration, business compliance certificates"
        ),
        display_name="India",
        welcome_examples=(
            "Income Tax Act compliance, GST planning, TDS optimization, "
            "business registration benefits"
        ),
    ),
}


def get_profile(jurisdiction: Jurisdiction | str) -> JurisdictionProfile:
    """Look up a profile; raises ValueError for an unsupported jurisdiction."""
    return JURISDICTION_PROFILES[Jurisdiction(jurisdiction)]
