"""
Email templates for account and safety notifications
"""
from html import escape

APP_NAME = "PathtoForever"
SUPPORT_EMAIL = "support@pathtoforever.com"
APPEALS_URL = "https://www.pathtoforever.com/account/appeals"


def get_email_base_template(content: str) -> str:
    """Base email template with responsive styling"""
    return f"""
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{APP_NAME}</title>
    <style>
        body {{
            margin: 0;
            padding: 0;
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;
            background-color: #f9fafb;
            color: #111827;
        }}
        .email-container {{
            max-width: 600px;
            margin: 0 auto;
            background-color: #ffffff;
        }}
        .header {{
            background: linear-gradient(135deg, #A11013 0%, #d946a6 100%);
            padding: 32px 20px;
            text-align: center;
        }}
        .logo {{
            font-size: 28px;
            font-weight: bold;
            color: #ffffff;
            margin: 0;
        }}
        .content {{
            padding: 40px 30px;
        }}
        .greeting {{
            font-size: 22px;
            font-weight: 700;
            margin: 0 0 20px 0;
        }}
        .message {{
            font-size: 16px;
            line-height: 1.6;
            color: #4b5563;
            margin: 0 0 20px 0;
        }}
        .highlight {{
            background-color: #fef2f2;
            border-left: 4px solid #A11013;
            padding: 16px 20px;
            margin: 24px 0;
            border-radius: 4px;
        }}
        .button {{
            display: inline-block;
            padding: 14px 28px;
            background: #A11013;
            color: #ffffff !important;
            text-decoration: none;
            border-radius: 8px;
            font-weight: 600;
        }}
        .footer {{
            background-color: #f9fafb;
            padding: 24px 30px;
            text-align: center;
            font-size: 13px;
            color: #6b7280;
        }}
    </style>
</head>
<body>
    <div class="email-container">
        <div class="header">
            <h1 class="logo">{APP_NAME}</h1>
        </div>
        {content}
        <div class="footer">
            Need help? <a href="mailto:{SUPPORT_EMAIL}">Contact Support</a><br>
            You're receiving this email because of activity on your {APP_NAME} account.
        </div>
    </div>
</body>
</html>
"""


def get_sanction_applied_email(kind: str, reason: str, duration: str, expires_at: str = None) -> str:
    """Email sent to a user when a warning, suspension or ban is applied"""
    titles = {
        'warn': "You've received a warning",
        'suspend': "Your account has been suspended",
        'ban': "Your account has been banned",
    }
    until = f"<p class=\"message\">This lasts until <strong>{escape(expires_at)}</strong>.</p>" if expires_at else ""
    appeal = "" if kind == 'warn' else f"""
            <p style="text-align: center; margin: 32px 0;">
                <a href="{APPEALS_URL}" class="button">Submit an appeal</a>
            </p>"""
    content = f"""
        <div class="content">
            <h2 class="greeting">{titles.get(kind, 'Account notice')}</h2>
            <p class="message">Our safety team reviewed activity on your account.</p>
            <div class="highlight">
                <strong>Reason:</strong> {escape(reason or '')}<br>
                <strong>Duration:</strong> {escape(duration)}
            </div>
            {until}
            {appeal}
        </div>
    """
    return get_email_base_template(content)


def get_sanction_lifted_email(kind: str) -> str:
    content = f"""
        <div class="content">
            <h2 class="greeting">Your account restriction has been lifted</h2>
            <p class="message">
                The {escape(kind)} on your account is no longer active. Matches that ended
                because of it can be restored if both of you agree.
            </p>
        </div>
    """
    return get_email_base_template(content)


def get_appeal_reviewed_email(status: str) -> str:
    if status == 'approved':
        body = "Good news: your appeal was approved and the sanction has been lifted."
    else:
        body = "Your appeal was reviewed and the original decision stands."
    content = f"""
        <div class="content">
            <h2 class="greeting">Your appeal has been reviewed</h2>
            <p class="message">{body}</p>
        </div>
    """
    return get_email_base_template(content)


def get_report_resolved_email(status: str) -> str:
    """Email telling a reporter their report was handled"""
    outcome = "action was taken" if status == 'resolved' else "no action was needed"
    content = f"""
        <div class="content">
            <h2 class="greeting">Thanks for your report</h2>
            <p class="message">
                Our safety team has reviewed your report and {outcome}.
                Reports help keep {APP_NAME} safe for everyone.
            </p>
        </div>
    """
    return get_email_base_template(content)
