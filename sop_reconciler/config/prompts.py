"""LLM prompt templates for pipeline stages."""

# Common instruction to suppress thinking and ensure JSON-only output
# Note: curly braces must be escaped as {{ }} because templates go through str.format
JSON_ONLY_INSTRUCTION = """
CRITICAL: You MUST respond with ONLY a valid JSON object.
- Do NOT include any thinking, reasoning, or explanation.
- Do NOT use markdown code blocks.
- Start your response directly with the opening brace
- No text before or after the JSON."""

LANGUAGE_NAMES = {
    "zh": "Simplified Chinese",
    "en": "English",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


SOP_JSON_SHAPE = """{{
  "title": "Procedure title",
  "department": "Owning department (e.g. Sales, Warehouse, Customer Service)",
  "category": "Procedure category (e.g. Order Handling, Returns, Customer Inquiry)",
  "description": "Overview of the procedure",
  "steps": [
    {{
      "order": 1,
      "title": "Step title",
      "description": "Full step detail",
      "responsible": "Role or person responsible",
      "conditions": ["Trigger or precondition"],
      "notes": ["Caution, example, figure or exception"],
      "imageRefs": [0]
    }}
  ]
}}"""

# =============================================================================
# Structure extraction
# =============================================================================

EXTRACTION_SYSTEM_PROMPT = """You are an expert at turning operational documents into Standard Operating Procedures (SOPs). Your task is to extract the procedure in the document as an ordered list of steps.

EXTRACTION IS EXHAUSTIVE, NOT A SUMMARY:
1. Every sentence, example, number, threshold, name and exception in the source MUST appear in some step's description, conditions or notes
2. Do NOT compress, paraphrase away or drop detail; long step descriptions are expected
3. Keep the logical order of the source
4. Identify the responsible role for each step when the document names one
5. Put triggers and preconditions in "conditions"; cautions, examples and figures in "notes"
6. Where the text contains an [IMAGE n] marker, add n to that step's "imageRefs"
7. Assign the procedure to a department and a category
8. If a field cannot be determined, leave it empty rather than inventing content
9. Write all values in {language}
""" + JSON_ONLY_INSTRUCTION

EXTRACTION_USER_PROMPT = """Extract the SOP structure from this document{chunk_note}.

DOCUMENT:
---
{text}
---

Respond with ONLY this JSON structure (no other text):
""" + SOP_JSON_SHAPE

CHUNK_NOTE = " (part {chunk_number} of {total_chunks}; extract only the steps present in this part)"

# =============================================================================
# Translation
# =============================================================================

TRANSLATION_SYSTEM_PROMPT = """You are a professional translator of Standard Operating Procedures. Translate the SOP JSON you are given into {language}.

RULES:
1. Keep the JSON structure and all field names exactly as given; translate only the values
2. The "steps" array must map 1:1 to the source: same number of steps, same order
3. Do not merge, split, add or remove steps, conditions or notes
4. Keep numbers, codes, product names and "imageRefs" unchanged
""" + JSON_ONLY_INSTRUCTION

TRANSLATION_USER_PROMPT = """Translate this SOP into {language}. The source has {step_count} steps; the translation must have exactly {step_count} steps.

SOP:
{sop_json}"""

# =============================================================================
# Conflict classification
# =============================================================================

COMPARISON_SYSTEM_PROMPT = """You are an SOP analyst who identifies duplicated, overlapping and conflicting procedures. Compare a new SOP with an existing SOP and judge their relationship.

CLASSIFICATION RUBRIC:
- duplicate: similarity > 0.8, same procedure
- partial_overlap: similarity in [0.4, 0.8], some steps shared, some distinct
- conflicting: same subject matter but contradictory steps/requirements
- complementary: related but distinct procedures, can coexist

"similarity" is a number between 0 and 1.
""" + JSON_ONLY_INSTRUCTION

COMPARISON_USER_PROMPT = """NEW SOP:
Title: {new_title}
Department: {new_department}
Category: {new_category}
Step count: {new_step_count}
Steps: {new_steps}

EXISTING SOP:
Title: {existing_title}
Step count: {existing_step_count}
Steps: {existing_steps}

Respond with ONLY this JSON (no other text):
{{
  "similarity": 0.85,
  "conflictType": "duplicate|partial_overlap|conflicting|complementary",
  "details": "How the two procedures relate"
}}"""

# =============================================================================
# Merge
# =============================================================================

MERGE_STRATEGY_INSTRUCTIONS = {
    "merge_all": "Include every step of both SOPs.",
    "prefer_new": "Where the SOPs conflict, prefer the description from SOP A (new document).",
    "prefer_existing": "Where the SOPs conflict, prefer the description from SOP B (existing document).",
    "smart_combine": "Judge each conflict and keep the most complete and accurate description.",
}

MERGE_SYSTEM_PROMPT = """You are an expert at merging Standard Operating Procedures. Combine two SOPs into one unified, complete and logically ordered final version.

NON-NEGOTIABLE RULES:
1. Preserve every valuable detail from both inputs; never drop a step, condition, note or figure
2. Deduplicate identical steps into one step
3. When both SOPs describe the same step differently, combine the details of both rather than picking one side
4. Order the steps logically and number them 1..N with no gaps
5. Record conflicts that remain (different owners, different conditions) in that step's notes
6. For each step set "mergeInfo" to where it came from (e.g. "SOP A step 2 + SOP B step 3")
7. Set "mergeNotes" to a human-readable summary of the decisions taken
8. Write all values in {language}
""" + JSON_ONLY_INSTRUCTION

MERGE_USER_PROMPT = """SOP A (new document):
{new_sop}

SOP B (existing document):
{existing_sop}

MERGE STRATEGY: {strategy}
{strategy_instruction}

Respond with ONLY this JSON structure (no other text):
{{
  "title": "Merged title",
  "department": "Department",
  "category": "Category",
  "description": "Complete description covering both inputs",
  "steps": [
    {{
      "order": 1,
      "title": "Step title",
      "description": "Merged detail from both SOPs",
      "responsible": "Role",
      "conditions": ["Condition"],
      "notes": ["Note"],
      "imageRefs": [0],
      "mergeInfo": "SOP A step 1 + SOP B step 1"
    }}
  ],
  "mergeNotes": "Summary of merge decisions"
}}"""

# =============================================================================
# Question answering
# =============================================================================

QA_SYSTEM_PROMPT = """You are an SOP assistant helping employees understand and carry out standard operating procedures.

Answer the question using ONLY the SOP content provided:
- Cite the SOP information accurately
- Use clear, concise language
- Number the steps when several are involved
- Point out the responsible roles and key cautions
- If the content is incomplete, say so honestly
- Answer in {language}
""" + JSON_ONLY_INSTRUCTION

QA_USER_PROMPT = """SOP CONTENT:
{context}

QUESTION: {question}

Respond with ONLY this JSON (no other text):
{{
  "answer": "Your answer"
}}"""

NO_RESULTS_ANSWERS = {
    "zh": (
        "抱歉，我在现有的SOP中没有找到与“{question}”相关的信息。\n\n"
        "可能的原因：\n"
        "1. 这个流程还没有被记录到SOP中\n"
        "2. 可以尝试用不同的关键词提问\n"
        "3. 查看SOP列表，看是否有类似的流程"
    ),
    "en": (
        "Sorry, I couldn't find information related to \"{question}\" in the existing SOPs.\n\n"
        "Possible reasons:\n"
        "1. This process hasn't been documented in an SOP yet\n"
        "2. Try asking with different keywords\n"
        "3. Check the SOP list for similar processes"
    ),
}

IMAGE_NOTES = {
    "zh": "本流程包含 {count} 张指导图片",
    "en": "This procedure includes {count} reference images",
}
