"""Default review-request templates.

Placeholders use {{name}} syntax and are filled by
``rankitpro.services.drip_dispatcher.render_template``. Email bodies are the
company-editable defaults; SMS bodies are fixed and short.
"""

from rankitpro.domain.enums import DripStage

S = DripStage

EMAIL_TEMPLATES = {
    S.INITIAL: (
        "Dear {{customerName}},\n\n"
        "Thank you for choosing {{companyName}} for your recent {{serviceType}} service. "
        "We hope that {{technicianName}} provided an excellent experience.\n\n"
        "Would you take a moment to share your feedback with a quick review? It only takes "
        "30 seconds and helps us continue to provide great service to you and others in the "
        "{{location}} area.\n\n"
        "Click here to leave a review: {{reviewLink}}\n\n"
        "Thank you for your time!\n\n"
        "Best regards,\n"
        "The {{companyName}} Team"
    ),
    S.FIRST_FOLLOW_UP: (
        "Hi {{customerName}},\n\n"
        "We just wanted to follow up about your recent service with {{technicianName}}. "
        "Your opinion is valuable to us, and we'd appreciate if you could take a moment to "
        "share your experience.\n\n"
        "Leave a quick review here: {{reviewLink}}\n\n"
        "Thank you!\n\n"
        "{{companyName}}"
    ),
    S.SECOND_FOLLOW_UP: (
        "Hello {{customerName}},\n\n"
        "We noticed you haven't had a chance to leave us a review yet. We'd still love to "
        "hear about your experience with {{technicianName}} during your recent "
        "{{serviceType}} service.\n\n"
        "Your feedback helps us improve and assists others looking for quality service in "
        "the {{location}} area.\n\n"
        "Share your thoughts here: {{reviewLink}}\n\n"
        "Thanks again for choosing {{companyName}}."
    ),
    S.FINAL_FOLLOW_UP: (
        "Hi {{customerName}},\n\n"
        "This is our final reminder about leaving a review for your recent service. We value "
        "your feedback and would appreciate hearing about your experience with us.\n\n"
        "If you have a moment, please click here to share your thoughts: {{reviewLink}}\n\n"
        "Thank you for being a valued customer.\n\n"
        "The {{companyName}} Team"
    ),
}

SUBJECT_TEMPLATES = {
    S.INITIAL: "How was your service with {{companyName}}?",
    S.FIRST_FOLLOW_UP: "Your feedback matters to {{companyName}}",
    S.SECOND_FOLLOW_UP: "A quick reminder about your {{companyName}} service",
    S.FINAL_FOLLOW_UP: "Last chance to share your {{companyName}} experience",
}

SMS_TEMPLATES = {
    S.INITIAL: (
        "{{companyName}}: Thanks for choosing us for your {{serviceType}} service! "
        "Please share your experience with a quick review: {{reviewLink}}"
    ),
    S.FIRST_FOLLOW_UP: (
        "{{companyName}} here! We'd love to hear about your recent service. "
        "Please share your feedback: {{reviewLink}}"
    ),
    S.SECOND_FOLLOW_UP: (
        "{{companyName}}: Your feedback matters! Please take a moment to review your "
        "recent service: {{reviewLink}}"
    ),
    S.FINAL_FOLLOW_UP: (
        "{{companyName}}: Final reminder to share your thoughts on your recent service "
        "experience: {{reviewLink}}"
    ),
}

# Appended to every SMS body (carrier opt-out requirement)
SMS_OPT_OUT_LINE = "Reply STOP to opt out."

DEFAULT_SMART_TIMING_PREFERENCES = {
    "prefer_weekdays": True,
    "preferred_days": [1, 2, 3, 4, 5],  # 0 = Sunday, 6 = Saturday
    "avoid_holidays": True,
    "avoid_late_night": True,
    "optimize_by_open_rates": True,
}
