"""Guest customization section handling."""

from typing import Optional

from stratus.models.platform import GuestCustomizationSection
from stratus.models.state import ObservedCustomization
from stratus.models.vm import CustomizationSpec


def build_customization_section(current: Optional[GuestCustomizationSection],
                                spec: CustomizationSpec,
                                vm_name: str) -> GuestCustomizationSection:
    """Overlay the declared fields on the VM's current section.

    Fields left unset in the declaration keep their current value.
    """
    values = (current or GuestCustomizationSection()).model_dump()
    values["enabled"] = spec.enabled
    values["computer_name"] = spec.hostname or vm_name

    if spec.change_sid is not None:
        values["change_sid"] = spec.change_sid
    if spec.allow_local_admin_password is not None:
        values["admin_password_enabled"] = spec.allow_local_admin_password
    if spec.auto_generate_password is not None:
        values["admin_password_auto"] = spec.auto_generate_password
    if spec.admin_password is not None:
        values["admin_password"] = spec.admin_password
        values["admin_password_auto"] = False
    if spec.must_change_password_on_first_login is not None:
        values["reset_password_required"] = spec.must_change_password_on_first_login
    if spec.number_of_auto_logons is not None:
        values["admin_auto_logon_count"] = spec.number_of_auto_logons
        values["admin_auto_logon_enabled"] = spec.number_of_auto_logons > 0
    if spec.init_script is not None:
        values["customization_script"] = spec.init_script

    join = spec.domain_join
    if join is not None:
        values["join_domain_enabled"] = join.enabled
        values["use_org_settings"] = join.use_org_settings
        values["domain_name"] = join.domain_name or ""
        values["domain_user_name"] = join.user or ""
        values["domain_user_password"] = join.password or ""
        values["machine_object_ou"] = join.organizational_unit or ""

    return GuestCustomizationSection(**values)


def observe_customization(section: Optional[GuestCustomizationSection]) -> ObservedCustomization:
    """Project the platform section into the snapshot shape, minus secrets."""
    if section is None:
        return ObservedCustomization()
    return ObservedCustomization(
        enabled=section.enabled,
        change_sid=section.change_sid,
        allow_local_admin_password=section.admin_password_enabled,
        auto_generate_password=section.admin_password_auto,
        must_change_password_on_first_login=section.reset_password_required,
        number_of_auto_logons=section.admin_auto_logon_count if section.admin_auto_logon_enabled else 0,
        join_domain=section.join_domain_enabled,
        join_org_domain=section.use_org_settings,
        domain_name=section.domain_name or None,
        domain_user=section.domain_user_name or None,
        organizational_unit=section.machine_object_ou or None,
        init_script=section.customization_script or None,
        hostname=section.computer_name or None,
    )


def customization_changed(observed: ObservedCustomization, spec: CustomizationSpec, vm_name: str) -> bool:
    """Whether applying the declaration would change the observed section.

    Passwords are not readable back, so a declared password alone never
    counts as a change.
    """
    if observed.enabled != spec.enabled:
        return True
    if not spec.enabled:
        return False
    if observed.hostname != (spec.hostname or vm_name):
        return True

    declared = {
        "change_sid": spec.change_sid,
        "allow_local_admin_password": spec.allow_local_admin_password,
        "auto_generate_password": spec.auto_generate_password,
        "must_change_password_on_first_login": spec.must_change_password_on_first_login,
        "number_of_auto_logons": spec.number_of_auto_logons,
        "init_script": spec.init_script,
    }
    if spec.admin_password is not None:
        declared["auto_generate_password"] = False

    join = spec.domain_join
    if join is not None:
        declared.update({
            "join_domain": join.enabled,
            "join_org_domain": join.use_org_settings,
            "domain_name": join.domain_name,
            "domain_user": join.user,
            "organizational_unit": join.organizational_unit,
        })

    for field, value in declared.items():
        if value is not None and getattr(observed, field) != value:
            return True
    return False
