import re
from typing import Optional

from mediadl.core.entities import ArtifactKind
from .result import ExtractResult

# Fshare degradation reasons
SERVICE_NOT_CONFIGURED = "SERVICE_NOT_CONFIGURED"
API_FAILED = "API_FAILED"
QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
LOGIN_FAILED = "LOGIN_FAILED"
PROCESSING_ERROR = "PROCESSING_ERROR"

_FSHARE_CODE_RE = re.compile(r"fshare\.vn/file/([A-Z0-9]+)", re.IGNORECASE)

_FSHARE_STATUS = {
    SERVICE_NOT_CONFIGURED: [
        "Fshare service is not configured.",
        "An administrator needs to set up the API credentials.",
    ],
    API_FAILED: [
        "The Fshare API is temporarily unavailable.",
        "Switching to manual processing.",
    ],
    QUOTA_EXCEEDED: [
        "Today's Fshare download quota has been used up.",
        "The file will be processed manually.",
    ],
    LOGIN_FAILED: [
        "Could not sign in to Fshare.",
        "An administrator needs to check the account credentials.",
    ],
}


def fshare_file_code(url: str) -> Optional[str]:
    match = _FSHARE_CODE_RE.search(url or "")
    return match.group(1) if match else None


def fshare_display_title(url: str) -> str:
    code = fshare_file_code(url)
    return f"Fshare File {code}" if code else "Fshare File"


def facebook_photo_instructions(url: str) -> ExtractResult:
    lines = [
        "Facebook Photo Download Instructions:",
        "",
        "Facebook has restricted automated photo downloads.",
        "Here are other ways to save this photo:",
        "",
        "1. Right-click on the photo and choose \"Save image as...\"",
        "2. Open the photo in a new tab and save it from the browser",
        "3. Take a screenshot of the photo",
        "4. Use Facebook's own \"Download\" option if available",
        "",
        f"Original URL: {url}",
        "",
        "Note: this limitation comes from Facebook's privacy and security policies.",
        "Videos from Facebook can still be downloaded normally.",
    ]
    return ExtractResult(
        kind=ArtifactKind.INSTRUCTIONS,
        title="Facebook Photo - Download Instructions",
        filename="facebook_photo_instructions.txt",
        resolved_quality="Instructions",
        watermark_free=True,
        available_qualities=["Manual Download"],
        instructions="\n".join(lines),
    )


def fshare_instructions(url: str, reason: str, password: Optional[str] = None,
                        target_email: Optional[str] = None, detail: str = "",
                        title: Optional[str] = None) -> ExtractResult:
    title = title or fshare_display_title(url)
    lines = ["FSHARE - MANUAL PROCESSING", "", f"File: {title}", f"Link: {url}"]
    if password:
        lines.append(f"Password: {password}")
    if target_email:
        lines.append(f"Recipient email: {target_email}")

    lines += ["", "STATUS:"]
    if reason == PROCESSING_ERROR:
        lines.append(f"Processing error: {detail}" if detail else "Processing error.")
    else:
        lines += _FSHARE_STATUS.get(reason, ["Processing manually."])

    lines += [
        "",
        "NEXT STEPS:",
        "1. The request has been recorded",
        "2. An administrator will download the file from Fshare",
        "3. The file will be uploaded to cloud storage",
    ]
    if target_email:
        lines += [f"4. It will be shared with {target_email}",
                  "5. A notification is sent when done"]
    else:
        lines.append("4. A notification is sent when done")
    lines += ["", "Processing time: 15-30 minutes",
              "Support: contact an administrator if needed"]

    return ExtractResult(
        kind=ArtifactKind.INSTRUCTIONS,
        title=title,
        filename="fshare_manual_processing.txt",
        resolved_quality="Instructions",
        watermark_free=True,
        instructions="\n".join(lines),
        processing_reason=reason,
        extras={
            "fileCode": fshare_file_code(url),
            "hasPassword": bool(password),
            "targetEmail": target_email,
        },
    )
