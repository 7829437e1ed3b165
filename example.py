"""Example usage of the compatdiff analysis engine."""

import copy
import json
import uuid

from compatdiff import CompatibilityEngine, EngineConfig, InMemoryEventSink

# Baseline schema (currently released)
source_schema = {
    "metadata": {"providerId": "billing", "providerName": "Billing API", "version": "2.3.1"},
    "types": [
        {"id": "string", "name": "string", "kind": "primitive", "primitiveKind": "string"},
        {"id": "money", "name": "Money", "kind": "primitive", "primitiveKind": "number"},
        {
            "id": "invoiceStatus",
            "name": "InvoiceStatus",
            "kind": "enum",
            "values": ["draft", "open", "paid", "void"],
        },
        {
            "id": "invoice",
            "name": "Invoice",
            "kind": "object",
            "properties": [
                {"name": "id", "type": "string", "required": True},
                {"name": "legacyId", "type": "string"},
                {"name": "total", "type": "money", "required": True},
                {"name": "status", "type": "invoiceStatus", "required": True},
            ],
        },
        {"id": "invoiceList", "name": "InvoiceList", "kind": "array", "items": "invoice"},
    ],
    "endpoints": [
        {
            "operationId": "listInvoices",
            "path": "/invoices",
            "method": "GET",
            "parameters": [{"name": "limit", "in": "query", "type": "string"}],
            "responses": [{"statusCode": 200, "type": "invoiceList"}],
        },
        {
            "operationId": "voidInvoice",
            "path": "/invoices/{id}/void",
            "method": "POST",
            "parameters": [{"name": "id", "in": "path", "type": "string", "required": True}],
            "responses": [{"statusCode": 200, "type": "invoice"}, {"statusCode": 409}],
        },
    ],
    "authentication": [{"id": "apiKey", "type": "apiKey"}],
    "errors": [{"code": "invoice_not_found"}, {"code": "invoice_already_paid"}],
}

# Candidate release
target_schema = copy.deepcopy(source_schema)
target_schema["metadata"]["version"] = "2.4.0"
invoice = target_schema["types"][3]
invoice["properties"] = [
    {"name": "id", "type": "string", "required": True},
    {"name": "total", "type": "money", "required": True},  # legacyId removed (optional)
    {"name": "status", "type": "invoiceStatus", "required": True},
    {"name": "currency", "type": "string"},  # new optional property
]
target_schema["types"][2]["values"] = ["draft", "open", "paid", "void", "uncollectible"]
target_schema["endpoints"][0]["parameters"].append(
    {"name": "cursor", "in": "query", "type": "string"}
)
target_schema["errors"].append({"code": "rate_limited"})


def main():
    print("=" * 60)
    print("compatdiff Analysis Engine - Example")
    print("=" * 60)

    engine = CompatibilityEngine()
    result = engine.analyze({
        "requestId": str(uuid.uuid4()),
        "sourceSchema": source_schema,
        "targetSchema": target_schema,
    })

    if result.success:
        print(f"\nVerdict: {result.verdict.value}")
        print(f"Determinism hash: {result.analysis_metadata.determinism_hash}")

        print(f"\nSummary:")
        print(f"  Total: {result.summary.total_changes}")
        print(f"  Breaking: {result.summary.breaking_changes}")
        print(f"  Non-breaking: {result.summary.non_breaking_changes}")

        recommendation = result.version_recommendation
        print(f"\nRecommendation: {recommendation.bump_type.value} -> "
              f"{recommendation.recommended_version}")
        print(f"  {recommendation.rationale}")

        print(f"\nChanges:")
        for change in result.changes:
            print(f"  - [{change.severity.value}] {change.path}")
            print(f"    {change.description}")
            print(f"    Guidance: {change.upgrade_guidance}")

        print("\n" + "-" * 60)
        print("Full JSON Report:")
        print(json.dumps(result.to_dict(), indent=2))

    else:
        print(f"\nAnalysis failed:")
        for error in result.errors:
            print(f"  {error}")


def example_with_breaking_change():
    """Example that removes an endpoint under strict checking."""
    print("\n" + "=" * 60)
    print("Example with Breaking Change")
    print("=" * 60)

    breaking_target = copy.deepcopy(target_schema)
    breaking_target["endpoints"] = breaking_target["endpoints"][:1]

    engine = CompatibilityEngine()
    result = engine.analyze({
        "requestId": str(uuid.uuid4()),
        "sourceSchema": source_schema,
        "targetSchema": breaking_target,
        "options": {"strictness": "strict", "includeDetailedDiff": True},
    })

    print(f"\nVerdict: {result.verdict.value}")
    for change in result.changes:
        if change.severity.value == "breaking":
            print(f"  - {change.path}")
            print(f"    Affects: {', '.join(change.impact.affected_components)}")
            if change.diff:
                print(f"    Diff: {change.diff}")


def example_with_events():
    """Example collecting decision events."""
    print("\n" + "=" * 60)
    print("Example with Decision Events")
    print("=" * 60)

    sink = InMemoryEventSink()
    config = EngineConfig(affected_languages=["python", "typescript"])
    engine = CompatibilityEngine(config, sink)

    engine.analyze({
        "requestId": str(uuid.uuid4()),
        "sourceSchema": source_schema,
        "targetSchema": target_schema,
    })

    print(f"\nEvents:")
    for event in sink.events:
        print(f"  - {event.event_type.value} (confidence {event.confidence_score})")
        print(f"    {event.rationale}")


if __name__ == "__main__":
    main()
    example_with_breaking_change()
    example_with_events()
