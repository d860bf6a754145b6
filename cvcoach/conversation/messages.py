"""
messages.py - User-facing reply texts.

Templates use str.format placeholders: {bot}, {link}, {email}, {score},
{insights}. Upload limits quoted here must match Settings.max_upload_bytes.
"""

CHOOSE_REVIEW_TYPE = "Would you like a Basic (free) or Advanced (paid) review?"

UPLOAD_PROMPT = (
    "Please upload your CV (PDF or DOCX, max 5MB). Your CV is stored only for the "
    "review and is securely deleted within 24 hours."
)

PAYMENT_LINK = "To proceed with an Advanced review, please complete the payment via this link: {link}"

UPSELL_PAYMENT_LINK = "Great! " + PAYMENT_LINK

CLARIFY_REVIEW_TYPE = (
    "I didn't understand that. Please type 'Basic' for a free review or 'Advanced' "
    "for a paid review."
)

PAYMENT_PENDING = (
    "I'll confirm your payment automatically once it's completed. If you've already "
    "paid, please wait a moment while I verify the payment."
)

ASK_EMAIL = (
    "Your payment has been confirmed. Would you like to receive your advanced review "
    "by email as well? If yes, reply with your email address, or type 'skip' to "
    "continue without email."
)

EMAIL_SAVED = (
    "Thank you! Your advanced review will be sent to {email}. Now, please upload your "
    "CV (PDF or DOCX, max 5MB)."
)

EMAIL_NOTED = "Thanks! Now, please upload your CV (PDF or DOCX, max 5MB)."

EMAIL_SKIPPED = "No problem. Please upload your CV (PDF or DOCX, max 5MB)."

INVALID_EMAIL = (
    "That doesn't look like a valid email address. Please enter a valid email or "
    "type 'skip' to continue without email."
)

AWAITING_CV = "I'm waiting for your CV. Please upload a PDF or DOCX file (max 5MB)."

UNSUPPORTED_FORMAT = (
    "Sorry, I can only accept PDF or DOCX files. Please upload your CV in one of "
    "these formats."
)

CV_RECEIVED = "Thanks! I've received your CV and will process it shortly."

ADVANCED_IN_PROGRESS = "I'm generating your in-depth CV review. This might take a few moments..."

BASIC_RESULT = (
    "Here's your basic CV review:\n\n{insights}\n\n"
    "Would you like to unlock deeper insights? Reply 'Advanced' to proceed to payment."
)

ADVANCED_RESULT = (
    "Here's your advanced CV review (Score: {score}/100):\n\n{insights}\n\n"
    "Download full report: {link}"
)

EMAIL_SENT_NOTE = "\n\nA copy of this review has also been sent to your email ({email})."

PROCESSING_ERROR = "Sorry, there was an error processing your CV. Please try again later."

CV_EXPIRED = (
    "Your previously uploaded CV is no longer available. Please upload it again "
    "(PDF or DOCX, max 5MB) to receive your advanced review."
)

UPSELL_DECLINED = (
    "Thank you for using our CV review service. Feel free to message us anytime "
    "for a new review."
)

IDLE_PROMPT = "Hello! I'm {bot}, your CV review assistant. Send 'Review CV' to get started."

PAYMENT_RECEIVED_PROCESSING = (
    "Thank you for your payment! I will now process your CV for an advanced review. "
    "This will take just a moment..."
)

PAYMENT_RECEIVED_UPLOAD = (
    "Thank you for your payment! Please upload your CV (PDF or DOCX, max 5MB) to "
    "receive your advanced review."
)


def bullet_list(items: list[str]) -> str:
    return "\n\n".join(f"• {item}" for item in items)
