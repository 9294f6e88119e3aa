"""
Program record schema.

Mirrors the camelCase layout of data/programs.json. Records are frozen:
the collection is loaded once and never mutated while serving.
"""

from pydantic import BaseModel, ConfigDict, Field

ANY_VISA = "Any valid US visa"


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Eligibility(_Record):
    usmle_steps: tuple[str, ...] = Field(default=(), alias="usmleSteps")
    visa_types: tuple[str, ...] = Field(default=(), alias="visaTypes")
    graduation_cutoff: str = Field(default="", alias="graduationCutoff")
    clinical_experience: str = Field(default="", alias="clinicalExperience")
    additional_notes: str = Field(default="", alias="additionalNotes")


class Contact(_Record):
    email: str = ""
    phone: str = ""
    website: str = ""
    coordinator_name: str = Field(default="", alias="coordinatorName")


class Program(_Record):
    id: str
    name: str
    hospital: str = ""
    city: str = ""
    state: str = ""
    state_code: str = Field(default="", alias="stateCode")
    specialty: str = ""
    subspecialty: str = ""
    eligibility: Eligibility = Field(default_factory=Eligibility)
    fee: str = ""
    duration: str = ""
    contact: Contact = Field(default_factory=Contact)
    application_deadline: str = Field(default="", alias="applicationDeadline")
    accepting_applications: bool = Field(default=False, alias="acceptingApplications")
    last_verified: str = Field(default="", alias="lastVerified")
    lor: bool = False
    tags: tuple[str, ...] = ()
    description: str = ""

    def to_json(self) -> dict:
        """Dump in the on-disk (camelCase) layout."""
        return self.model_dump(mode="json", by_alias=True)
