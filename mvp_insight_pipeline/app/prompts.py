MARKET_ANALYSIS_PROMPT_TEMPLATE = """\
Analyze the following project idea and provide a detailed market analysis:

Structure your response with the following sections:
1. A brief summary of the project
2. Key Competitors
3. Market Trends
4. Market Opportunities
5. Market Size Estimate
6. Recommendations

Format your response as HTML with Tailwind CSS classes. Use the following guidelines:
- Use <h1>, <h2>, <h3> tags for headings with appropriate Tailwind classes
- Use <p> tags for paragraphs with appropriate Tailwind classes
- Use <ul> and <li> tags for lists with appropriate Tailwind classes
- Include relevant statistics and data when available
- Cite your sources using superscript notation (e.g., <sup>1</sup>) and provide a sources section at the end
- Use Tailwind classes for styling: text-lg for normal text, text-xl for important points, font-semibold for emphasis
- For headings use: text-2xl font-bold text-primary for main headings, text-xl font-semibold for subheadings
- For lists use: list-disc pl-5 space-y-2 my-4
- For paragraphs use: my-4 text-gray-800 dark:text-gray-200

Project: {project_description}"""

CHART_DATA_PROMPT_TEMPLATE = """\
Based on the following project description and the latest available market data, generate realistic chart data for market analysis visualization.
Use these guidelines for data accuracy:

1. Market Share Distribution (pieChart):
   - Use actual market share percentages of major companies in the relevant sector
   - Include "Others" category to account for smaller players
   - Values should sum to 100%
   - Label format: "Company Name" or "Segment Name"

2. Market Growth Trends (areaChart):
   - Show market size in billions USD for the last five years
   - Use actual historical data where available
   - Put the unit in the "unit" field (e.g., "B USD") and keep "value" numeric
   - Label format: "YYYY" for years

3. Key Metrics Comparison (barChart):
   - Compare actual metrics like revenue, user base, or market penetration
   - Use the latest available data
   - Include proper units (e.g., "$", "M users", "%")
   - Do not include hypothetical values for the project
   - Label format: "Metric - Company/Segment"

Project Description: {project_description}

Note: Focus on providing accurate, real-world data from reliable sources. Do not include speculative values for the project itself."""

SUMMARY_PROMPT_TEMPLATE = """\
Below is a detailed market analysis. Please create a concise 1-2 paragraph summary that captures the most important insights.
Focus on market size, growth potential, key competitors, and unique opportunities.
Make the summary informative yet brief, highlighting only the most critical information.

MARKET ANALYSIS:
{analysis_content}"""
