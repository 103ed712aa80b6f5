# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Side-effect node executors: HTTP requests, AI generation, email send and
social posting. Each external call goes through call_collaborator so it is
bounded by the collaborator timeout.
"""

from typing import Any, Dict, Optional

import httpx

from outreach.workflow.context import ExecutionContext
from outreach.workflow.exceptions import (
    NodeExecutionError,
    PermanentProviderError,
    ProviderError,
    QuotaExceededError,
    TransientProviderError,
)
from outreach.workflow.interfaces import NodeServices
from outreach.workflow.models import (
    AIConfig,
    EmailConfig,
    Node,
    NodeResult,
    NodeType,
    SocialPostConfig,
    WebhookConfig,
)
from outreach.workflow.nodes.base import NodeExecutor, call_collaborator, failure, register
from outreach.workflow.templating import render, render_value


BODYLESS_METHODS = {"GET", "HEAD", "DELETE", "OPTIONS"}


@register
class HttpRequestExecutor(NodeExecutor):
    """webhook (with url) and apiRequest nodes; a webhook without url is a trigger"""

    node_types = (NodeType.WEBHOOK, NodeType.API_REQUEST)

    async def run(self, node: Node, config: WebhookConfig, ctx: ExecutionContext, services: NodeServices) -> NodeResult:
        if not config.url:
            if node.type == NodeType.WEBHOOK:
                return NodeResult(logs=["Webhook trigger received"])
            return failure("apiRequest node requires a url")

        variables = ctx.as_dict()
        url = render(config.url, variables)
        headers = render_value(config.headers, variables)
        body = render_value(config.body, variables)

        request_kwargs: Dict[str, Any] = {"headers": headers}
        if body is not None and config.method not in BODYLESS_METHODS:
            if isinstance(body, (dict, list)):
                request_kwargs["json"] = body
            else:
                request_kwargs["content"] = str(body)

        async def send() -> httpx.Response:
            try:
                response = await services.http_client.request(config.method, url, **request_kwargs)
            except httpx.TransportError as e:
                raise TransientProviderError(str(e) or type(e).__name__)
            if response.status_code == 429 or response.status_code >= 500:
                raise TransientProviderError(
                    f"HTTP {response.status_code}: {response.reason_phrase}", response.status_code
                )
            if response.status_code >= 400:
                raise PermanentProviderError(
                    f"HTTP {response.status_code}: {response.reason_phrase}", response.status_code
                )
            return response

        response = await call_collaborator(node, services, f"{config.method} {url}", send, retry=True)

        try:
            payload = response.json()
        except ValueError:
            payload = response.text

        ctx.set(config.response_key, {"status": response.status_code, "body": payload})
        return NodeResult(logs=[f"{config.method} {url} -> {response.status_code}"])


@register
class AIGenerateExecutor(NodeExecutor):
    node_types = (NodeType.GEMINI, NodeType.AI)

    async def run(self, node: Node, config: AIConfig, ctx: ExecutionContext, services: NodeServices) -> NodeResult:
        prompt = render(config.prompt, ctx.as_dict())
        user = ctx.get("user") or {}
        api_key = user.get("geminiApiKey") or services.config.get_gemini_api_key()

        text = await call_collaborator(
            node,
            services,
            "AI generation",
            lambda: services.ai_generator.generate(prompt, api_key, config.model),
            retry=True,
        )

        ctx.set(config.output_key, text)
        return NodeResult(logs=[f"Generated {len(text or '')} characters into '{config.output_key}'"])


@register
class EmailExecutor(NodeExecutor):
    node_types = (NodeType.EMAIL, NodeType.TEMPLATE)

    async def _resolve_template(
        self, node: Node, config: EmailConfig, ctx: ExecutionContext, services: NodeServices
    ) -> Optional[Dict[str, Any]]:
        if config.template_id:
            template = await call_collaborator(
                node, services, "Template lookup", lambda: services.templates.get(config.template_id)
            )
            if template is None:
                raise PermanentProviderError(f"Template not found: {config.template_id}")
            return template
        if config.subject or config.body:
            return {"subject": config.subject or "", "body": config.body or ""}
        return await call_collaborator(
            node, services, "Default template lookup", lambda: services.templates.get_default(ctx.user_id)
        )

    async def run(self, node: Node, config: EmailConfig, ctx: ExecutionContext, services: NodeServices) -> NodeResult:
        business = ctx.get("business") or {}
        if not business.get("email"):
            return failure("Business has no email address")
        business_id = business.get("id") or ctx.business_id
        user = ctx.get("user") or {}

        template = await self._resolve_template(node, config, ctx, services)
        if template is None:
            return failure("No email template configured")

        rendered = services.templates.interpolate(template, business, user)
        variables = ctx.as_dict()
        rendered = {
            "subject": render(rendered.get("subject", ""), variables),
            "body": render(rendered.get("body", ""), variables),
        }

        allowed = await call_collaborator(
            node,
            services,
            "Quota check",
            lambda: services.quota.check_and_increment(ctx.user_id, services.config.daily_email_limit),
        )
        if not allowed:
            raise QuotaExceededError(node.id, node.type.value)

        try:
            result = await call_collaborator(
                node,
                services,
                "Email send",
                lambda: services.email_sender.send(business, rendered, user.get("emailCredentials")),
            )
        except ProviderError as e:
            await self._mark_failed(business_id, e.message, services)
            raise
        except NodeExecutionError as e:
            await self._mark_failed(business_id, e.reason, services)
            raise

        if not result.success:
            error = result.error or "Email send failed"
            await self._mark_failed(business_id, error, services)
            return failure(error)

        if business_id:
            await services.businesses.update(business_id, {
                "emailSent": True,
                "emailStatus": "sent",
                "emailSentAt": services.clock().isoformat(),
            })
        ctx.set("emailSubject", rendered["subject"])
        return NodeResult(logs=[f"Email sent to {business['email']}: {rendered['subject']}"])

    async def _mark_failed(self, business_id: Optional[str], error: str, services: NodeServices) -> None:
        if business_id:
            await services.businesses.update(business_id, {"emailStatus": "failed", "emailError": error})


@register
class SocialPostExecutor(NodeExecutor):
    node_types = (NodeType.SOCIAL_POST,)

    async def run(self, node: Node, config: SocialPostConfig, ctx: ExecutionContext, services: NodeServices) -> NodeResult:
        variables = ctx.as_dict()
        content = render(config.content, variables)
        media = render(config.media_url, variables) if config.media_url else None
        if config.platform == "instagram" and not media:
            return failure("Instagram posts require a mediaUrl")

        user = ctx.get("user") or {}
        account = (user.get("socialAccounts") or {}).get(config.platform)
        if config.account_id:
            account = {**(account or {}), "id": config.account_id}
        if not account:
            return failure(f"No {config.platform} account connected")

        result = await call_collaborator(
            node,
            services,
            f"Publish to {config.platform}",
            lambda: services.social_publisher.publish(config.platform, account, content, media),
            retry=True,
        )
        if result.error:
            return failure(result.error)

        ctx.set("socialPostId", result.id)
        return NodeResult(logs=[f"Posted to {config.platform}: {result.id}"])
