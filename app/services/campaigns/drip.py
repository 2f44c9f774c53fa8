"""
Sequencias drip padrao por tipo de campanha e agenda de passos.

O `delay_days` de um passo conta a partir da ultima mensagem enviada ao
destinatario (ou da matricula, no primeiro passo). O avanco e decidido
por esse horario, nunca pelo numero de execucoes.
"""
from datetime import datetime, timedelta
from typing import Dict, Optional

from app.services.campaigns.types import (
    Campaign,
    CampaignConfig,
    CampaignRecipient,
    DripStep,
    RecipientStatus,
)
from app.services.segments.types import Channel


def _sms(index: int, delay: int, body: str) -> DripStep:
    return DripStep(step_index=index, delay_days=delay, channel=Channel.SMS, template_body=body)


def _email(index: int, delay: int, subject: str, body: str) -> DripStep:
    return DripStep(
        step_index=index,
        delay_days=delay,
        channel=Channel.EMAIL,
        template_body=body,
        template_subject=subject,
    )


DRIP_PRESETS: Dict[str, CampaignConfig] = {
    "EXAM_REMINDER": CampaignConfig(
        steps=[
            _sms(0, 0,
                 "Hi {{firstName}}! It's been about a year since your last eye exam at "
                 "{{storeName}}. Book your annual exam today: {{storePhone}}."),
            _email(1, 14, "Your Annual Eye Exam Reminder - {{storeName}}",
                   "Dear {{firstName}},\n\nYour last eye exam was about a year ago. "
                   "Regular exams catch vision changes early.\n\n"
                   "Book at {{storeName}}: {{storePhone}}"),
        ],
        stop_on_conversion=True,
        cooldown_days=365,
    ),
    "WALKIN_FOLLOWUP": CampaignConfig(
        steps=[
            _sms(0, 2,
                 "Hi {{firstName}}! Thanks for visiting {{storeName}}. Still thinking about "
                 "those frames? Call us at {{storePhone}}."),
            _email(1, 7, "We saved your favourites - {{storeName}}",
                   "Hi {{firstName}},\n\nThe frames you tried on are still waiting for you. "
                   "Call {{storePhone}} to reserve them."),
            _sms(2, 14,
                 "{{firstName}}, we have a special offer this week at {{storeName}}. "
                 "Call {{storePhone}}."),
        ],
        stop_on_conversion=True,
        cooldown_days=90,
    ),
    "SECOND_PAIR": CampaignConfig(
        steps=[
            _email(0, 0, "Protect your backup pair - exclusive second-pair offer",
                   "Hi {{firstName}},\n\nLoving your {{frameBrand}} frames? Ask about our "
                   "second-pair deal at {{storeName}}: {{storePhone}}."),
            _sms(1, 21,
                 "{{firstName}}, two pairs are better than one! Second-pair special at "
                 "{{storeName}}. {{storePhone}}"),
        ],
        stop_on_conversion=True,
        cooldown_days=180,
    ),
    "PRESCRIPTION_EXPIRY": CampaignConfig(
        steps=[
            _sms(0, 0,
                 "Hi {{firstName}}! Your prescription expires on {{rxExpiryDate}}. "
                 "Book your exam at {{storeName}}: {{storePhone}}."),
            _email(1, 14, "Your prescription is expiring - time to book your exam",
                   "Dear {{firstName}},\n\nYour prescription expires on {{rxExpiryDate}}. "
                   "Book at {{storeName}}: {{storePhone}}."),
        ],
        stop_on_conversion=True,
        cooldown_days=365,
    ),
    "ABANDONMENT_RECOVERY": CampaignConfig(
        steps=[
            _sms(0, 7,
                 "Hi {{firstName}}! Still thinking about your visit to {{storeName}}? "
                 "Call us at {{storePhone}}."),
            _email(1, 14, "Price match guarantee - {{storeName}}",
                   "Hi {{firstName}},\n\nWe offer a price match guarantee and a 30-day "
                   "satisfaction promise. Call {{storePhone}}."),
            _sms(2, 21,
                 "{{firstName}}, exclusive discount this week for returning visitors. "
                 "Call {{storeName}} at {{storePhone}}."),
        ],
        stop_on_conversion=True,
        cooldown_days=90,
    ),
    "POST_PURCHASE_REFERRAL": CampaignConfig(
        steps=[
            _sms(0, 3,
                 "Hi {{firstName}}! Loving your new frames? Refer a friend to {{storeName}} "
                 "with code {{referralCode}} and you both get a reward."),
            _email(1, 10, "Share {{storeName}} with a friend - earn rewards",
                   "Hi {{firstName}},\n\nWhen you refer a friend you both benefit. "
                   "Your code: {{referralCode}}."),
        ],
        stop_on_conversion=False,
        cooldown_days=180,
    ),
    "VIP_INSIDER": CampaignConfig(
        steps=[
            _email(0, 0, "You're a VIP at {{storeName}}",
                   "Dear {{firstName}},\n\nAs one of our most valued customers you get first "
                   "access to new arrivals. Call {{storePhone}} anytime."),
        ],
        stop_on_conversion=False,
        cooldown_days=60,
    ),
    "BIRTHDAY_ANNIVERSARY": CampaignConfig(
        steps=[
            _sms(0, 0,
                 "Happy Birthday {{firstName}}! Enjoy a birthday treat on your next visit to "
                 "{{storeName}}. {{storePhone}}"),
        ],
        stop_on_conversion=False,
        cooldown_days=365,
    ),
    "DORMANT_REACTIVATION": CampaignConfig(
        steps=[
            _email(0, 0, "We miss you, {{firstName}}",
                   "Hi {{firstName}},\n\nIt's been a while since we've seen you at "
                   "{{storeName}}. Call {{storePhone}} or stop in anytime."),
            _sms(1, 21,
                 "Hi {{firstName}}, {{storeName}} has new frames in stock. {{storePhone}}"),
        ],
        stop_on_conversion=True,
        cooldown_days=365,
    ),
    "INSURANCE_RENEWAL": CampaignConfig(
        steps=[
            _sms(0, 0,
                 "Hi {{firstName}}! Your {{insuranceProvider}} vision benefits renew in "
                 "{{insuranceRenewalMonth}}. Book at {{storeName}}: {{storePhone}}."),
            _email(1, 14,
                   "Your {{insuranceProvider}} vision benefits renew in {{insuranceRenewalMonth}}",
                   "Dear {{firstName}},\n\nDon't let your benefits go unused. "
                   "Call {{storeName}} at {{storePhone}}."),
        ],
        stop_on_conversion=True,
        cooldown_days=365,
    ),
    "INSURANCE_MAXIMIZATION": CampaignConfig(
        steps=[
            _email(0, 0, "Use your {{insuranceProvider}} benefits before they expire",
                   "Dear {{firstName}},\n\nYour {{insuranceProvider}} vision benefits renew in "
                   "{{insuranceRenewalMonth}}. Don't let unused benefits go to waste!\n\n"
                   "Book your eye exam and choose new frames before your benefits reset. "
                   "Call {{storeName}} at {{storePhone}}."),
            _sms(1, 14,
                 "{{firstName}}, your vision insurance renews in {{insuranceRenewalMonth}}. "
                 "Use your benefits at {{storeName}} before they expire! {{storePhone}}"),
        ],
        stop_on_conversion=True,
        cooldown_days=365,
    ),
    "DAMAGE_REPLACEMENT": CampaignConfig(
        steps=[
            _sms(0, 0,
                 "Hi {{firstName}}! Your {{frameBrand}} frames are getting some mileage. "
                 "Time to upgrade or get a backup pair? Visit {{storeName}} or call {{storePhone}}."),
        ],
        stop_on_conversion=True,
        cooldown_days=180,
    ),
    "COMPETITOR_SWITCHER": CampaignConfig(
        steps=[
            _email(0, 0, "Your prescription is ready - let us fill it at {{storeName}}",
                   "Hi {{firstName}},\n\nWe noticed you had an eye exam but haven't filled your "
                   "prescription with us yet. At {{storeName}}, we offer a wide selection of "
                   "frames and expert fitting.\n\nLet us take care of you. Call {{storePhone}} today."),
        ],
        stop_on_conversion=True,
        cooldown_days=180,
    ),
    "NEW_ARRIVAL_VIP": CampaignConfig(
        steps=[
            _email(0, 0, "New arrivals just for you - {{storeName}} VIP preview",
                   "Hi {{firstName}},\n\nAs one of our top customers, you get first look at our "
                   "latest frames. New inventory just arrived at {{storeName}}!\n\n"
                   "Call {{storePhone}} to schedule a private viewing or come in anytime."),
        ],
        stop_on_conversion=False,
        cooldown_days=14,
    ),
    "LIFESTYLE_MARKETING": CampaignConfig(
        steps=[
            _email(0, 0, "Frames for your lifestyle - {{storeName}}",
                   "Hi {{firstName}},\n\nEvery lifestyle deserves the right eyewear. Whether you're "
                   "at a screen all day or enjoying the outdoors, we have frames made for you.\n\n"
                   "Visit {{storeName}} or call {{storePhone}} to explore our curated collection."),
        ],
        stop_on_conversion=False,
        cooldown_days=90,
    ),
    "EDUCATIONAL_NURTURE": CampaignConfig(
        steps=[
            _email(0, 0, "5 things your optician wants you to know",
                   "Hi {{firstName}},\n\nDid you know that UV protection matters even on cloudy "
                   "days? Or that blue light from screens can affect your sleep?\n\n"
                   "At {{storeName}}, we're here to help you see better and live better. "
                   "Call {{storePhone}} with any questions."),
        ],
        stop_on_conversion=False,
        cooldown_days=90,
    ),
    "LENS_EDUCATION": CampaignConfig(
        steps=[
            _email(0, 0, "Upgrade your lenses - see the difference at {{storeName}}",
                   "Hi {{firstName}},\n\nTechnology in lenses has come a long way. Anti-reflective "
                   "coatings, progressive lenses and photochromic tints can all make a difference, "
                   "and we can help you find the upgrade that's right for you.\n\n"
                   "Ask our team at {{storeName}}. Call {{storePhone}}."),
        ],
        stop_on_conversion=False,
        cooldown_days=90,
    ),
    "AGING_INVENTORY": CampaignConfig(
        steps=[
            _email(0, 0, "Special pricing on select frames - {{storeName}}",
                   "Hi {{firstName}},\n\nWe're offering special pricing on select frames at "
                   "{{storeName}}, perfect timing to upgrade or get that second pair you've been "
                   "considering.\n\nStop in or call {{storePhone}} while supplies last."),
        ],
        stop_on_conversion=True,
        cooldown_days=60,
    ),
    "STYLE_EVOLUTION": CampaignConfig(
        steps=[
            _email(0, 0, "Your style is evolving - new frames at {{storeName}}",
                   "Hi {{firstName}},\n\nFashion changes, and so does eyewear! Based on your past "
                   "purchases, we've curated some new arrivals we think you'll love.\n\n"
                   "Visit {{storeName}} or call {{storePhone}} to see what's new."),
        ],
        stop_on_conversion=True,
        cooldown_days=60,
    ),
    "FAMILY_ADDON": CampaignConfig(
        steps=[
            _email(0, 0, "Family eyecare at {{storeName}} - see together",
                   "Hi {{firstName}},\n\nWe love caring for your whole family's vision! Does "
                   "everyone in your family have their glasses and annual exams up to date?\n\n"
                   "Bring the whole family to {{storeName}}, we make it easy. Call {{storePhone}}."),
        ],
        stop_on_conversion=True,
        cooldown_days=180,
    ),
    "ONE_TIME_BLAST": CampaignConfig(
        steps=[
            _sms(0, 0,
                 "Hi {{firstName}}! {{storeName}} has a special announcement for you. "
                 "Call us at {{storePhone}}."),
        ],
        stop_on_conversion=False,
        cooldown_days=30,
        enrollment_mode="manual",
    ),
}


def default_drip_config() -> CampaignConfig:
    """Passo unico por SMS para tipos sem preset."""
    return CampaignConfig(
        steps=[_sms(0, 0, "Hi {{firstName}}! A message from {{storeName}}. Call {{storePhone}}.")],
        stop_on_conversion=False,
        cooldown_days=30,
    )


def get_drip_config(campaign_type: str) -> CampaignConfig:
    return DRIP_PRESETS.get(campaign_type) or default_drip_config()


def resolve_drip_config(campaign: Campaign) -> CampaignConfig:
    """Config propria da campanha ou o preset do tipo."""
    return campaign.config or get_drip_config(campaign.type)


def next_action_at(recipient: CampaignRecipient, config: CampaignConfig) -> Optional[datetime]:
    """
    Quando o proximo passo do destinatario vence.

    Returns:
        datetime do vencimento, ou None se nao ha proximo passo
        (terminal ou sequencia esgotada)
    """
    if recipient.status != RecipientStatus.ACTIVE:
        return None
    if recipient.current_step >= len(config.steps):
        return None

    reference = recipient.last_message_at or recipient.enrolled_at
    if reference is None:
        return None

    step = config.steps[recipient.current_step]
    return reference + timedelta(days=step.delay_days)


def due_step(
    recipient: CampaignRecipient,
    config: CampaignConfig,
    now: datetime,
) -> Optional[DripStep]:
    """Passo a enviar agora, ou None se nada vence."""
    due_at = next_action_at(recipient, config)
    if due_at is None or now < due_at:
        return None
    return config.steps[recipient.current_step]
